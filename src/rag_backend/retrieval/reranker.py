"""
Result reranking strategies.

All strategies take the same SearchResult list and return at most ``top_k``
results. Reranking is an optimization: any internal failure degrades to the
first ``top_k`` candidates unchanged.
"""

from enum import Enum

from loguru import logger

from ..embedding.embedder import EmbeddingClient
from ..errors import ValidationError
from ..storage.models import SearchResult
from ..vectors import cosine_similarity

LENGTH_BONUS_CAP = 0.2


class RerankStrategy(str, Enum):
    LEXICAL = "lexical"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    DIVERSITY = "diversity"
    NONE = "none"


def keyword_score(query: str, text: str) -> float:
    """Fraction of query terms (longer than 2 chars) found as substrings of the text."""
    terms = query.lower().split()
    if not terms:
        return 0.0
    text_lower = text.lower()
    matches = sum(1 for term in terms if len(term) > 2 and term in text_lower)
    return matches / len(terms)


def lexical_score(query: str, text: str) -> float:
    """Keyword score plus a length bonus of up to 0.2, capped at 1."""
    length_bonus = min(len(text) / 1000, 1) * LENGTH_BONUS_CAP
    return min(keyword_score(query, text) + length_bonus, 1.0)


def hybrid_score(
    query: str,
    text: str,
    query_embedding: list[float],
    embedding: list[float] | None,
    keyword_weight: float,
    semantic_weight: float,
) -> float:
    """``keyword_weight * keyword + semantic_weight * cosine``; weights are not normalized."""
    semantic = cosine_similarity(query_embedding, embedding or [])
    return keyword_score(query, text) * keyword_weight + semantic * semantic_weight


class Reranker:
    """
    Reorders retrieved candidates by a secondary relevance signal.

    Semantic strategies need the question embedding; pass it in when it is
    already known, otherwise it is computed with ``embedder``.
    """

    def __init__(
        self,
        embedder: EmbeddingClient | None = None,
        keyword_weight: float = 0.3,
        semantic_weight: float = 0.7,
        similarity_threshold: float = 0.8,
    ):
        self.embedder = embedder
        self.keyword_weight = keyword_weight
        self.semantic_weight = semantic_weight
        self.similarity_threshold = similarity_threshold

    def get_strategies(self) -> list[str]:
        return [s.value for s in RerankStrategy if s != RerankStrategy.NONE]

    async def rerank(
        self,
        query: str,
        results: list[SearchResult],
        top_k: int = 5,
        strategy: RerankStrategy | str = RerankStrategy.HYBRID,
        query_embedding: list[float] | None = None,
    ) -> list[SearchResult]:
        """Dispatch to the named strategy."""
        try:
            strategy = RerankStrategy(strategy)
        except ValueError as e:
            raise ValidationError(f"Unknown rerank strategy: {strategy!r}") from e

        if strategy == RerankStrategy.LEXICAL:
            return self.lexical_rerank(query, results, top_k)
        if strategy == RerankStrategy.SEMANTIC:
            return await self.semantic_rerank(query, results, top_k, query_embedding)
        if strategy == RerankStrategy.HYBRID:
            return await self.hybrid_rerank(query, results, top_k, query_embedding=query_embedding)
        if strategy == RerankStrategy.DIVERSITY:
            return self.diversity_rerank(results, top_k)
        return results[:top_k]

    async def _query_embedding(self, query: str, query_embedding: list[float] | None) -> list[float]:
        if query_embedding is not None:
            return query_embedding
        if self.embedder is None:
            raise ValueError("semantic reranking needs an embedder or a query embedding")
        return await self.embedder.embed(query)

    def lexical_rerank(self, query: str, results: list[SearchResult], top_k: int = 5) -> list[SearchResult]:
        if not results:
            return []
        try:
            logger.debug(f"Lexical reranking {len(results)} results for query: {query!r}")
            scores = [lexical_score(query, r.text) for r in results]
            # sorted() is stable, so ties keep retrieval order
            order = sorted(range(len(results)), key=lambda i: scores[i], reverse=True)
            return [results[i] for i in order[:top_k]]
        except Exception as e:
            logger.error(f"Failed to rerank results: {e}")
            return results[:top_k]

    async def semantic_rerank(
        self,
        query: str,
        results: list[SearchResult],
        top_k: int = 5,
        query_embedding: list[float] | None = None,
    ) -> list[SearchResult]:
        if not results:
            return []
        try:
            logger.debug(f"Semantic reranking {len(results)} results")
            vector = await self._query_embedding(query, query_embedding)
            scores = [cosine_similarity(vector, r.embedding or []) for r in results]
            order = sorted(range(len(results)), key=lambda i: scores[i], reverse=True)
            return [results[i] for i in order[:top_k]]
        except Exception as e:
            logger.error(f"Failed to semantic rerank: {e}")
            return results[:top_k]

    async def hybrid_rerank(
        self,
        query: str,
        results: list[SearchResult],
        top_k: int = 5,
        keyword_weight: float | None = None,
        semantic_weight: float | None = None,
        query_embedding: list[float] | None = None,
    ) -> list[SearchResult]:
        if not results:
            return []
        keyword_weight = self.keyword_weight if keyword_weight is None else keyword_weight
        semantic_weight = self.semantic_weight if semantic_weight is None else semantic_weight
        try:
            logger.debug(f"Hybrid reranking {len(results)} results")
            vector = await self._query_embedding(query, query_embedding)
            scores = [
                hybrid_score(query, r.text, vector, r.embedding, keyword_weight, semantic_weight)
                for r in results
            ]
            order = sorted(range(len(results)), key=lambda i: scores[i], reverse=True)
            return [results[i] for i in order[:top_k]]
        except Exception as e:
            logger.error(f"Failed to hybrid rerank: {e}")
            return results[:top_k]

    def diversity_rerank(
        self,
        results: list[SearchResult],
        top_k: int = 5,
        similarity_threshold: float | None = None,
    ) -> list[SearchResult]:
        """Greedy selection skipping candidates too similar to one already accepted."""
        if not results:
            return []
        threshold = self.similarity_threshold if similarity_threshold is None else similarity_threshold
        try:
            logger.debug(f"Diversity reranking {len(results)} results")
            selected: list[SearchResult] = []
            selected_embeddings: list[list[float]] = []

            for result in results:
                if len(selected) >= top_k:
                    break
                embedding = result.embedding or []
                if any(cosine_similarity(embedding, s) > threshold for s in selected_embeddings):
                    continue
                selected.append(result)
                if embedding:
                    selected_embeddings.append(embedding)

            logger.debug(f"Diversity reranked to {len(selected)} results")
            return selected
        except Exception as e:
            logger.error(f"Failed to diversity rerank: {e}")
            return results[:top_k]

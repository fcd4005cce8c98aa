"""
Retrieval pipeline: question -> embedding -> similarity search.
"""

import asyncio
import time

from loguru import logger

from ..config import Config
from ..embedding.embedder import EmbeddingClient
from ..errors import ValidationError
from ..storage.collection_store import CollectionStore
from ..storage.models import SearchFilter, SearchResult


class RetrievalPipeline:
    """
    Embeds a question and searches one or more collections.

    Result order is always fully determined by score (descending), never by
    the order in which per-collection searches complete.
    """

    def __init__(
        self,
        store: CollectionStore,
        embedder: EmbeddingClient,
        default_top_k: int = Config.RAG_TOP_K,
        concurrency: int = Config.QUERY_CONCURRENCY,
    ):
        self.store = store
        self.embedder = embedder
        self.default_top_k = default_top_k
        self.concurrency = concurrency

    async def embed_question(self, question: str) -> list[float]:
        if not question or not question.strip():
            raise ValidationError("Question must not be empty")
        return await self.embedder.embed(question)

    async def query(
        self,
        question: str,
        collection: str,
        top_k: int | None = None,
        filter: SearchFilter | None = None,
        query_embedding: list[float] | None = None,
    ) -> list[SearchResult]:
        """
        Top-k similarity search over one collection.

        Args:
            question: Natural-language question
            collection: Collection to search
            top_k: Number of hits (defaults to RAG_TOP_K)
            filter: Optional attribute filter
            query_embedding: Precomputed question embedding

        Raises:
            NotFound: If the collection does not exist
            RemoteUnavailable: If embedding or search failed
        """
        top_k = top_k or self.default_top_k
        start = time.perf_counter()

        if query_embedding is None:
            query_embedding = await self.embed_question(question)

        results = await self.store.search(collection, query_embedding, top_k, filter)
        results = sorted(results, key=lambda r: r.score, reverse=True)[:top_k]

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Retrieved {len(results)} results from {collection} in {elapsed_ms:.0f}ms")
        return results

    async def query_multiple(
        self,
        question: str,
        collections: list[str],
        top_k_per_collection: int = 3,
        top_k: int | None = None,
        query_embedding: list[float] | None = None,
    ) -> list[SearchResult]:
        """
        Search several collections with one embedding and merge by score.

        A collection that fails is skipped with a warning.
        """
        top_k = top_k or self.default_top_k
        if query_embedding is None:
            query_embedding = await self.embed_question(question)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def search_one(collection: str) -> list[SearchResult]:
            async with semaphore:
                try:
                    return await self.store.search(
                        collection, query_embedding, top_k_per_collection
                    )
                except Exception as e:
                    logger.warning(f"Failed to search collection {collection}: {e}")
                    return []

        per_collection = await asyncio.gather(*(search_one(c) for c in collections))
        merged = [result for results in per_collection for result in results]
        top_results = sorted(merged, key=lambda r: r.score, reverse=True)[:top_k]

        logger.info(
            f"Retrieved {len(top_results)} results from {len(collections)} collections"
        )
        return top_results

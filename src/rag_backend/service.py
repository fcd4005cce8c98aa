"""
End-to-end query path: guard -> retrieve -> rerank -> assemble -> generate.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from .config import Config
from .context.assembler import ContextAssembler
from .context.prompts import PromptBuilder
from .embedding.embedder import EmbeddingClient, GeminiEmbedderAdapter
from .errors import AccessDenied, GuardrailViolation, ValidationError
from .guardrails import AccessRule, Guardrail, GuardrailVerdict, PassthroughGuardrail
from .llm.gateway import CompletionClient, LiteLLMCompletionClient
from .memory import MemoryStore
from .retrieval.reranker import Reranker, RerankStrategy
from .retrieval.retriever import RetrievalPipeline
from .storage.collection_store import CollectionStore
from .storage.keyed_store import KeyedStore, RedisKeyedStore, VectorKeyedStore
from .storage.models import SearchFilter, SearchResult
from .storage.qdrant_client import QdrantVectorDatabase


@dataclass
class RagAnswer:
    question: str
    answer: str
    sources: list[SearchResult]
    context: list[str]
    timings: dict[str, float] = field(default_factory=dict)
    model: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "context": self.context,
            "timings": self.timings,
            "model": self.model,
        }


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class RagService:
    """
    Answers questions from one or more collections.

    Example:
        service = create_rag_service()
        await service.initialize()
        result = await service.answer("What color is grass?", "docs")
    """

    def __init__(
        self,
        store: CollectionStore,
        embedder: EmbeddingClient,
        completion: CompletionClient,
        reranker: Reranker | None = None,
        assembler: ContextAssembler | None = None,
        prompts: PromptBuilder | None = None,
        guardrail: Guardrail | None = None,
        access_rule: AccessRule | None = None,
        memory: MemoryStore | None = None,
        rerank_strategy: RerankStrategy | str = Config.RAG_RERANK_STRATEGY,
        top_k: int = Config.RAG_TOP_K,
        candidate_multiplier: int = 2,
    ):
        self.store = store
        self.embedder = embedder
        self.completion = completion
        self.retriever = RetrievalPipeline(store, embedder, default_top_k=top_k)
        self.reranker = reranker or Reranker(embedder)
        self.assembler = assembler or ContextAssembler()
        self.prompts = prompts or PromptBuilder()
        self.guardrail = guardrail or PassthroughGuardrail()
        self.access_rule = access_rule
        self.memory = memory
        self.rerank_strategy = RerankStrategy(rerank_strategy)
        self.top_k = top_k
        self.candidate_multiplier = candidate_multiplier

    async def initialize(self) -> None:
        await self.store.initialize()
        if self.memory is not None:
            await self.memory.initialize()

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    async def _check_input(
        self, question: str, verdict: GuardrailVerdict | None, user_id: str | None
    ) -> None:
        if verdict is None:
            verdict = await self.guardrail.validate_input(question, user_id)
        if not verdict.valid:
            logger.warning(f"Input rejected: {verdict.reason}")
            raise GuardrailViolation(verdict.reason or "Input rejected", verdict.violations)

    async def _check_output(self, answer: str) -> str:
        verdict = await self.guardrail.validate_output(answer)
        if verdict.valid:
            return answer
        logger.warning(f"Output sanitized: {verdict.reason}")
        return self.guardrail.sanitize(answer)

    async def _may_read(self, role: str | None, collection: str) -> bool:
        if self.access_rule is None or role is None:
            return True
        metadata = await self.store.get_metadata(collection)
        tags = frozenset(metadata.tags) if metadata else frozenset()
        return self.access_rule(role, tags)

    def _candidate_count(self, top_k: int) -> int:
        if self.rerank_strategy == RerankStrategy.NONE:
            return top_k
        return top_k * self.candidate_multiplier

    # -------------------------------------------------------------------------
    # Query path
    # -------------------------------------------------------------------------

    async def answer(
        self,
        question: str,
        collection: str,
        top_k: int | None = None,
        *,
        filter: SearchFilter | None = None,
        user_id: str | None = None,
        role: str | None = None,
        input_verdict: GuardrailVerdict | None = None,
    ) -> RagAnswer:
        """
        Answer a question from a single collection.

        Raises:
            GuardrailViolation: The input verdict was not valid
            AccessDenied: The role may not read the collection
            NotFound: The collection does not exist
        """
        start = time.perf_counter()
        top_k = top_k or self.top_k
        await self._check_input(question, input_verdict, user_id)
        if not await self._may_read(role, collection):
            raise AccessDenied(f"Role {role!r} may not read collection {collection}")

        logger.info(f"RAG query on {collection} (top_k={top_k}): {question!r}")

        retrieval_start = time.perf_counter()
        query_embedding = await self.retriever.embed_question(question)
        candidates = await self.retriever.query(
            question,
            collection,
            self._candidate_count(top_k),
            filter=filter,
            query_embedding=query_embedding,
        )
        sources = await self.reranker.rerank(
            question, candidates, top_k, self.rerank_strategy, query_embedding
        )
        passages = self.assembler.build_context(sources)
        retrieval_ms = _elapsed_ms(retrieval_start)

        memory = ""
        if user_id and self.memory is not None:
            memory = await self.memory.retrieve_user_memory(user_id)

        generation_start = time.perf_counter()
        answer = await self.completion.complete(
            self.prompts.build_rag_messages(question, passages, memory)
        )
        answer = await self._check_output(answer)
        generation_ms = _elapsed_ms(generation_start)

        total_ms = _elapsed_ms(start)
        logger.info(f"RAG query completed in {total_ms}ms ({len(sources)} sources)")
        return RagAnswer(
            question=question,
            answer=answer,
            sources=sources,
            context=passages,
            timings={"retrieval_ms": retrieval_ms, "generation_ms": generation_ms, "total_ms": total_ms},
            model=self.completion.model,
        )

    async def answer_multiple(
        self,
        question: str,
        collections: list[str],
        top_k_per_collection: int = 3,
        top_k: int | None = None,
        *,
        user_id: str | None = None,
        role: str | None = None,
        input_verdict: GuardrailVerdict | None = None,
    ) -> RagAnswer:
        """
        Answer from several collections; unreadable or failing collections are skipped.

        Raises:
            GuardrailViolation: The input verdict was not valid
            AccessDenied: The role may read none of the collections
        """
        start = time.perf_counter()
        top_k = top_k or self.top_k
        await self._check_input(question, input_verdict, user_id)
        if not collections:
            raise ValidationError("At least one collection is required")

        readable = []
        for collection in collections:
            if await self._may_read(role, collection):
                readable.append(collection)
            else:
                logger.warning(f"Role {role!r} may not read {collection}; skipping")
        if not readable:
            raise AccessDenied(f"Role {role!r} may not read any of {', '.join(collections)}")

        logger.info(f"Multi-collection query on {', '.join(readable)}: {question!r}")

        retrieval_start = time.perf_counter()
        query_embedding = await self.retriever.embed_question(question)
        candidates = await self.retriever.query_multiple(
            question,
            readable,
            top_k_per_collection,
            top_k=self._candidate_count(top_k),
            query_embedding=query_embedding,
        )
        sources = await self.reranker.rerank(
            question, candidates, top_k, self.rerank_strategy, query_embedding
        )
        passages = self.assembler.build_context(sources)
        retrieval_ms = _elapsed_ms(retrieval_start)

        contexts: dict[str, list[str]] = {}
        for source, passage in zip(sources, passages):
            contexts.setdefault(source.collection or "unknown", []).append(passage)

        generation_start = time.perf_counter()
        answer = await self.completion.complete(
            self.prompts.build_multi_collection_messages(question, contexts)
        )
        answer = await self._check_output(answer)
        generation_ms = _elapsed_ms(generation_start)

        total_ms = _elapsed_ms(start)
        logger.info(
            f"Multi-collection query completed in {total_ms}ms "
            f"({len(sources)} sources from {len(contexts)} collections)"
        )
        return RagAnswer(
            question=question,
            answer=answer,
            sources=sources,
            context=passages,
            timings={"retrieval_ms": retrieval_ms, "generation_ms": generation_ms, "total_ms": total_ms},
            model=self.completion.model,
        )

    async def rephrase_query(self, question: str) -> str:
        """Rewrite a question for retrieval; falls back to the original."""
        try:
            rephrased = await self.completion.complete(
                self.prompts.build_rephrase_messages(question), temperature=0.3, max_tokens=200
            )
        except Exception as e:
            logger.error(f"Failed to rephrase query: {e}")
            return question
        rephrased = rephrased.strip()
        logger.debug(f"Rephrased query: {rephrased!r}")
        return rephrased or question

    async def summarize_documents(self, documents: list[str]) -> str:
        """Summarize documents; returns "" on failure."""
        if not documents:
            return ""
        try:
            summary = await self.completion.complete(
                self.prompts.build_summarize_messages(documents), temperature=0.5, max_tokens=500
            )
        except Exception as e:
            logger.error(f"Failed to summarize documents: {e}")
            return ""
        return summary.strip()


def create_keyed_store(db: QdrantVectorDatabase, backend: str = Config.METADATA_BACKEND) -> KeyedStore:
    if backend == "redis":
        return RedisKeyedStore()
    return VectorKeyedStore(db)


def create_rag_service(
    guardrail: Guardrail | None = None,
    access_rule: AccessRule | None = None,
    with_memory: bool = False,
) -> RagService:
    """Wire a RagService from Config: Qdrant, Gemini embeddings, litellm completions."""
    Config.validate()
    db = QdrantVectorDatabase()
    store = CollectionStore(db, keyed_store=create_keyed_store(db))
    embedder = GeminiEmbedderAdapter()
    return RagService(
        store,
        embedder,
        LiteLLMCompletionClient(),
        guardrail=guardrail,
        access_rule=access_rule,
        memory=MemoryStore(store, embedder) if with_memory else None,
    )

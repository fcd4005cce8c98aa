# embedding/embedder.py
"""
Embedding clients: Gemini API adapter with batching, retry and rate limiting,
plus a deterministic offline embedder.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import google.generativeai as genai
from loguru import logger

from ..config import Config
from ..errors import ValidationError
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..vectors import hash_embedding


@runtime_checkable
class EmbeddingClient(Protocol):
    """Text -> vector. Batch output order always matches input order."""

    dimension: int

    async def embed(self, text: str) -> list[float]:
        """Embed a single query text."""

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed documents, one vector per input in the same order."""


@dataclass
class EmbeddingResult:
    """Result of an embedding operation."""

    vector: list[float]
    token_count: int
    model: str
    model_version: str


class RateLimiter:
    """Minimum-interval limiter shared by concurrent callers."""

    def __init__(self, calls_per_minute: int = 60):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self.lock = asyncio.Lock()

    async def wait(self):
        """Wait until we can make the next call."""
        async with self.lock:
            time_since_last = time.monotonic() - self.last_call
            if time_since_last < self.interval:
                sleep_time = self.interval - time_since_last
                logger.debug(f"Rate limiting: sleeping {sleep_time:.2f}s")
                await asyncio.sleep(sleep_time)
            self.last_call = time.monotonic()


class GeminiEmbedderAdapter:
    """
    Adapter for the Gemini embedding API.

    Features:
    - Batch embedding (up to ``batch_size`` texts per call), order preserved
    - Retry with per-attempt timeout and exponential backoff
    - Rate limiting
    - Usage tracking for quota management

    The SDK call is blocking, so it runs in a worker thread.
    """

    def __init__(
        self,
        api_key: str | None = Config.GEMINI_API_KEY,
        model: str = Config.EMBEDDING_MODEL,
        model_version: str = "1.0",
        dimension: int = Config.DEFAULT_VECTOR_DIM,
        batch_size: int = Config.EMBEDDING_BATCH_SIZE,
        calls_per_minute: int = Config.EMBEDDING_CALLS_PER_MINUTE,
        retry: RetryPolicy = DEFAULT_RETRY_POLICY,
    ):
        if api_key:
            genai.configure(api_key=api_key)
        self.model = model
        self.model_version = model_version
        self.dimension = dimension
        self.batch_size = batch_size
        self.retry = retry

        self.rate_limiter = RateLimiter(calls_per_minute)

        # Usage tracking
        self.call_count = 0
        self.token_count = 0
        self.error_count = 0

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single query for retrieval.

        Uses the "retrieval_query" task type for asymmetric search.
        """
        results = await self._embed_with_retry([text], task_type="retrieval_query")
        return results[0].vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [r.vector for r in await self.embed_documents(texts)]

    async def embed_documents(self, texts: list[str]) -> list[EmbeddingResult]:
        """
        Batch embed texts via the Gemini API.

        Args:
            texts: List of texts to embed

        Returns:
            List of EmbeddingResult objects in input order
        """
        results: list[EmbeddingResult] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            results.extend(await self._embed_with_retry(batch, task_type="retrieval_document"))
        return results

    async def _embed_with_retry(self, texts: list[str], task_type: str) -> list[EmbeddingResult]:
        async def attempt() -> list[EmbeddingResult]:
            await self.rate_limiter.wait()
            try:
                return await self._embed_once(texts, task_type)
            except Exception as e:
                self.error_count += 1
                if "400" in str(e) or "invalid" in str(e).lower():
                    # Bad request, retrying cannot help
                    raise ValidationError(f"Embedding request rejected: {e}") from e
                raise

        return await self.retry.call(attempt, f"embed {len(texts)} text(s)")

    async def _embed_once(self, texts: list[str], task_type: str) -> list[EmbeddingResult]:
        content = texts[0] if len(texts) == 1 else texts
        response = await asyncio.to_thread(
            genai.embed_content, model=self.model, content=content, task_type=task_type
        )

        embeddings = response["embedding"]
        # Single-text requests return one flat vector
        if embeddings and not isinstance(embeddings[0], list):
            embeddings = [embeddings]
        if len(embeddings) != len(texts):
            raise ValueError(f"Expected {len(texts)} embeddings, got {len(embeddings)}")

        self.call_count += 1
        self.token_count += sum(len(t.split()) for t in texts)  # Approximate

        logger.debug(f"Embedded batch of {len(texts)} texts")
        return [
            EmbeddingResult(
                vector=list(embedding),
                token_count=len(text.split()),
                model=self.model,
                model_version=self.model_version,
            )
            for text, embedding in zip(texts, embeddings)
        ]

    def get_usage(self) -> dict:
        """Get usage statistics."""
        return {
            "call_count": self.call_count,
            "token_count": self.token_count,
            "error_count": self.error_count,
            "model": self.model,
            "model_version": self.model_version,
        }

    def reset_usage(self):
        """Reset usage counters (e.g., for daily reset)."""
        self.call_count = 0
        self.token_count = 0
        self.error_count = 0


class HashEmbedder:
    """
    Deterministic character-code embedder.

    Needs no network access; useful for local development and for keyed
    lookups where similarity ranking does not matter.
    """

    def __init__(self, dimension: int = Config.METADATA_VECTOR_DIM):
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return hash_embedding(text, self.dimension)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [hash_embedding(t, self.dimension) for t in texts]

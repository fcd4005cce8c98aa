"""Embedding clients for ingestion and retrieval."""

from .embedder import (
    EmbeddingClient,
    EmbeddingResult,
    GeminiEmbedderAdapter,
    HashEmbedder,
    RateLimiter,
)

__all__ = [
    "EmbeddingClient",
    "EmbeddingResult",
    "GeminiEmbedderAdapter",
    "HashEmbedder",
    "RateLimiter",
]

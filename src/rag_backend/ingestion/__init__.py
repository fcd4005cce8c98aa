"""Ingestion pipeline for document chunking and embedding."""

from .chunker import Chunk, ChunkingOptions, TextChunker, estimate_token_count, validate_chunk_size
from .pipeline import (
    BatchIngestResult,
    Document,
    DocumentIngestor,
    IngestionMessage,
    IngestResult,
    ObjectFetcher,
)

__all__ = [
    "BatchIngestResult",
    "Chunk",
    "ChunkingOptions",
    "Document",
    "DocumentIngestor",
    "IngestionMessage",
    "IngestResult",
    "ObjectFetcher",
    "TextChunker",
    "estimate_token_count",
    "validate_chunk_size",
]

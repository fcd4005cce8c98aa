"""
Document ingestion: chunk, embed, store.

Triggered directly (process_document / process_batch) or by an ingestion
queue message that points at a document in object storage (handle_message).
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from ..config import Config
from ..embedding.embedder import EmbeddingClient
from ..errors import ValidationError
from ..storage.collection_store import CollectionStore
from ..storage.models import VectorRecord, utc_now
from .chunker import ChunkingOptions, TextChunker


@dataclass
class Document:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class IngestResult:
    collection: str
    document_id: str
    chunk_count: int
    stored_count: int
    ids: list[int] = field(default_factory=list)


@dataclass
class BatchIngestResult:
    """Per-document outcome of a batch; failures never abort the batch."""

    results: list[IngestResult] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def stored_count(self) -> int:
        return sum(r.stored_count for r in self.results)


@dataclass
class IngestionMessage:
    """Queue event announcing a document to ingest."""

    document_location: str
    document_mime_type: str
    target_collection: str
    timestamp: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IngestionMessage":
        try:
            return cls(
                document_location=data["documentLocation"],
                document_mime_type=data.get("documentMimeType") or "text/plain",
                target_collection=data["targetCollection"],
                timestamp=data.get("timestamp") or "",
            )
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Malformed ingestion message: {e}") from e

    @property
    def object_name(self) -> str:
        return self.document_location.rsplit("/", 1)[-1]


@runtime_checkable
class ObjectFetcher(Protocol):
    """Object storage read access."""

    async def fetch(self, location: str) -> bytes:
        """Return the raw bytes stored at ``location``."""


class DocumentIngestor:
    """Chunks documents, embeds the chunks in order and inserts them."""

    def __init__(
        self,
        store: CollectionStore,
        embedder: EmbeddingClient,
        chunker: TextChunker | None = None,
        concurrency: int = Config.INGEST_CONCURRENCY,
    ):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.concurrency = concurrency

    async def process_document(
        self,
        collection: str,
        document: Document,
        options: ChunkingOptions | None = None,
    ) -> IngestResult:
        """
        Chunk, embed and store one document.

        The collection is created (with metadata) if it does not exist yet.

        Raises:
            RagBackendError: Any failure; single-document ingestion propagates
        """
        start = time.perf_counter()
        document_id = document.id or uuid.uuid4().hex
        logger.info(f"Processing document {document_id} for collection: {collection}")

        chunks = self.chunker.chunk_text(document.text, options)
        if not chunks:
            logger.warning(f"Document {document_id} produced no chunks")
            return IngestResult(collection, document_id, chunk_count=0, stored_count=0)

        embeddings = await self.embedder.embed_batch([c.text for c in chunks])
        if len(embeddings) != len(chunks):
            raise ValidationError(
                f"Embedding count mismatch: {len(chunks)} chunks, {len(embeddings)} embeddings"
            )
        logger.debug(f"Generated {len(embeddings)} embeddings")

        await self.store.create_collection(collection, vector_dim=self.embedder.dimension)

        records = [
            VectorRecord(
                embedding=embedding,
                text=chunk.text,
                attributes={
                    **document.metadata,
                    **chunk.metadata,
                    "original_doc_id": document_id,
                    "chunk_index": chunk.sequence_index,
                    "total_chunks": chunk.total_chunks,
                    "start_offset": chunk.start_offset,
                    "end_offset": chunk.end_offset,
                    "chunk_hash": chunk.chunk_hash,
                    "token_count": chunk.token_count,
                },
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]
        inserted = await self.store.insert(collection, records)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Document {document_id} processed in {elapsed_ms:.0f}ms: "
            f"stored {inserted.inserted_count} chunks"
        )
        return IngestResult(
            collection,
            document_id,
            chunk_count=len(chunks),
            stored_count=inserted.inserted_count,
            ids=inserted.ids,
        )

    async def process_batch(
        self,
        collection: str,
        documents: list[Document],
        options: ChunkingOptions | None = None,
    ) -> BatchIngestResult:
        """Ingest documents concurrently; a failing document is recorded and skipped."""
        semaphore = asyncio.Semaphore(self.concurrency)
        batch = BatchIngestResult()

        async def ingest(index: int, document: Document) -> None:
            key = document.id or f"document_{index}"
            async with semaphore:
                try:
                    result = await self.process_document(collection, document, options)
                except Exception as e:
                    logger.warning(f"Skipping document {key}: {e}")
                    batch.failures[key] = str(e)
                    return
            batch.results.append(result)

        await asyncio.gather(*(ingest(i, d) for i, d in enumerate(documents)))
        logger.info(
            f"Batch ingestion into {collection}: {len(batch.results)} succeeded, "
            f"{len(batch.failures)} failed"
        )
        return batch

    async def handle_message(
        self,
        message: IngestionMessage | dict[str, Any],
        fetcher: ObjectFetcher,
    ) -> IngestResult | None:
        """
        Ingest the document an ingestion event points at.

        Never raises: one bad document must not stop the consumer.

        Returns:
            The ingest result, or None if the document was skipped
        """
        location = "<unknown>"
        try:
            if isinstance(message, dict):
                message = IngestionMessage.from_dict(message)
            location = message.document_location
            logger.info(f"Received document ingestion event for collection: {message.target_collection}")

            raw = await fetcher.fetch(location)
            text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            document = Document(
                text=text,
                metadata={
                    "source": message.object_name,
                    "mime_type": message.document_mime_type,
                    "uploaded_at": utc_now().isoformat(),
                },
            )
            result = await self.process_document(message.target_collection, document)
        except Exception as e:
            logger.error(f"Error processing document {location}: {e}")
            logger.warning(f"Skipping document {location.rsplit('/', 1)[-1]} due to processing error")
            return None

        logger.info(
            f"Stored {result.stored_count} chunks in collection: {message.target_collection}"
        )
        return result

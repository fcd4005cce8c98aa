# ingestion/chunker.py
"""
Separator-aware document chunking with character overlap.

Every chunk is an exact substring of the source document. Chunks after the
first start with ``overlap_length`` characters repeated from the end of the
previous chunk, so stripping those prefixes and concatenating reconstructs
the source.
"""

import hashlib
import re
from dataclasses import dataclass, field
from functools import lru_cache

import tiktoken
from loguru import logger

from ..config import Config
from ..errors import ValidationError

DEFAULT_SEPARATOR = "\n\n"
_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+")


@lru_cache(maxsize=1)
def _encoder() -> tiktoken.Encoding:
    # cl100k_base (GPT-4) is close enough to Gemini tokenization for budgeting
    return tiktoken.get_encoding("cl100k_base")


def estimate_token_count(text: str) -> int:
    """Count tokens with the cl100k_base encoding."""
    if not text:
        return 0
    return len(_encoder().encode(text))


def validate_chunk_size(chunk_size: int, min_size: int = 100, max_size: int = 10000) -> bool:
    return min_size <= chunk_size <= max_size


@dataclass
class Chunk:
    """A single chunk of document text."""

    id: str
    text: str
    start_offset: int  # Character offset in source document
    end_offset: int
    sequence_index: int
    total_chunks: int = 0
    overlap_length: int = 0  # Leading characters repeated from the previous chunk
    token_count: int = 0
    chunk_hash: str = ""  # SHA-256 of text content
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkingOptions:
    chunk_size: int = Config.RAG_CHUNK_SIZE
    overlap: int = Config.RAG_CHUNK_OVERLAP
    separator: str = DEFAULT_SEPARATOR

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValidationError(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValidationError(f"overlap must be >= 0, got {self.overlap}")
        if self.overlap >= self.chunk_size:
            raise ValidationError(
                f"overlap ({self.overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        if not self.separator:
            raise ValidationError("separator must not be empty")


class TextChunker:
    """
    Chunking strategies over plain text.

    - chunk_text: split on a separator, greedily pack parts, seed overlap
    - chunk_by_char_count: fixed sliding window
    - chunk_by_sentences: groups of sentences with sentence overlap
    """

    def __init__(self, options: ChunkingOptions | None = None):
        self.options = options or ChunkingOptions()

    def chunk_text(self, text: str, options: ChunkingOptions | None = None) -> list[Chunk]:
        """
        Chunk text by separator with character overlap.

        A single part longer than ``chunk_size`` is emitted whole; parts are
        never split.

        Args:
            text: Full document text
            options: Overrides the chunker's default options

        Returns:
            Chunks in document order with ``total_chunks`` set
        """
        options = options or self.options
        if not text:
            return []

        logger.debug(
            f"Chunking text ({len(text)} chars) with size={options.chunk_size}, "
            f"overlap={options.overlap}"
        )
        separator = options.separator
        chunks: list[Chunk] = []

        buffer = ""
        buffer_start = 0
        buffer_overlap = 0
        position = 0  # Offset of the current part in the source

        for i, part in enumerate(text.split(separator)):
            if i > 0:
                position += len(separator)

            if buffer and len(buffer) + len(part) + len(separator) > options.chunk_size:
                chunks.append(self._make_chunk(len(chunks), buffer, buffer_start, buffer_overlap))

                seed = buffer[max(0, len(buffer) - options.overlap) :] if options.overlap else ""
                if seed:
                    buffer = seed + separator + part
                    buffer_start = position - len(separator) - len(seed)
                else:
                    buffer = part
                    buffer_start = position
                buffer_overlap = len(seed)
            elif i == 0:
                buffer = part
            else:
                buffer = buffer + separator + part

            position += len(part)

        if buffer.strip():
            chunks.append(self._make_chunk(len(chunks), buffer, buffer_start, buffer_overlap))

        self._finalize(chunks)
        if chunks:
            sizes = [len(c.text) for c in chunks]
            logger.debug(f"Chunk sizes: min={min(sizes)}, max={max(sizes)}")
        logger.info(f"Created {len(chunks)} chunks")
        return chunks

    def chunk_by_char_count(
        self, text: str, chunk_size: int | None = None, overlap: int | None = None
    ) -> list[Chunk]:
        """Slide a fixed window over the text, ignoring separators."""
        chunk_size = self.options.chunk_size if chunk_size is None else chunk_size
        overlap = self.options.overlap if overlap is None else overlap
        ChunkingOptions(chunk_size=chunk_size, overlap=overlap)

        chunks: list[Chunk] = []
        start = 0
        while start < len(text):
            end = min(start + chunk_size, len(text))
            chunks.append(
                self._make_chunk(len(chunks), text[start:end], start, overlap if chunks else 0)
            )
            if end == len(text):
                break
            next_start = end - overlap
            if next_start <= start:
                break
            start = next_start

        self._finalize(chunks)
        logger.info(f"Created {len(chunks)} chunks by character count")
        return chunks

    def chunk_by_sentences(
        self, text: str, sentences_per_chunk: int = 5, overlap: int = 1
    ) -> list[Chunk]:
        """Group sentences; consecutive chunks share ``overlap`` sentences."""
        if sentences_per_chunk <= 0 or overlap < 0 or overlap >= sentences_per_chunk:
            raise ValidationError(
                f"Invalid sentence chunking: {sentences_per_chunk} per chunk, overlap {overlap}"
            )
        if not text.strip():
            return []

        spans = [m.span() for m in _SENTENCE_PATTERN.finditer(text)] or [(0, len(text))]
        step = sentences_per_chunk - overlap

        chunks: list[Chunk] = []
        for i in range(0, len(spans), step):
            group = spans[i : i + sentences_per_chunk]
            raw = text[group[0][0] : group[-1][1]]
            chunk_text = raw.strip()
            if not chunk_text:
                continue
            start = group[0][0] + (len(raw) - len(raw.lstrip()))
            chunk = self._make_chunk(len(chunks), chunk_text, start, 0)
            chunk.metadata["sentence_count"] = len(group)
            chunks.append(chunk)
            if i + sentences_per_chunk >= len(spans):
                break

        self._finalize(chunks)
        logger.info(f"Created {len(chunks)} chunks by sentences")
        return chunks

    @staticmethod
    def _make_chunk(index: int, text: str, start: int, overlap_length: int) -> Chunk:
        return Chunk(
            id=f"chunk_{index}",
            text=text,
            start_offset=start,
            end_offset=start + len(text),
            sequence_index=index,
            overlap_length=overlap_length,
        )

    @staticmethod
    def _finalize(chunks: list[Chunk]) -> None:
        """Stamp totals, hashes and token counts once the chunk list is complete."""
        for chunk in chunks:
            chunk.total_chunks = len(chunks)
            chunk.chunk_hash = hashlib.sha256(chunk.text.encode("utf-8")).hexdigest()
            chunk.token_count = estimate_token_count(chunk.text)

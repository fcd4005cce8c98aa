"""
Tests for TextChunker.

Tests:
- Greedy separator packing with character overlap
- Oversized parts are never split
- Reconstruction: chunks minus their overlap prefixes rebuild the source
- Character-window termination for any chunk_size > overlap >= 0
"""

import hashlib

import pytest

from rag_backend.errors import ValidationError
from rag_backend.ingestion.chunker import (
    ChunkingOptions,
    TextChunker,
    estimate_token_count,
    validate_chunk_size,
)

PARAGRAPHS = "\n\n".join(
    [
        "Alpha paragraph about collections.",
        "Beta paragraph about embeddings and vectors.",
        "Gamma paragraph.",
        "Delta paragraph describing the chunker in a little more detail.",
        "Epsilon.",
    ]
)


def _reconstruct(chunks):
    return "".join(c.text[c.overlap_length :] for c in chunks)


@pytest.fixture
def chunker():
    return TextChunker(ChunkingOptions(chunk_size=60, overlap=10))


class TestChunkText:
    def test_sky_and_grass_example(self, chunker):
        chunks = chunker.chunk_text(
            "The sky is blue. Grass is green.",
            ChunkingOptions(chunk_size=20, overlap=5, separator=". "),
        )

        assert [c.text for c in chunks] == ["The sky is blue", " blue. Grass is green."]
        assert chunks[1].overlap_length == 5
        assert len(chunks[1].text) <= 20 + 5 + len(". ")

    def test_chunks_are_source_substrings(self, chunker):
        for chunk in chunker.chunk_text(PARAGRAPHS):
            assert PARAGRAPHS[chunk.start_offset : chunk.end_offset] == chunk.text

    def test_overlap_seeds_next_chunk(self, chunker):
        chunks = chunker.chunk_text(PARAGRAPHS)

        assert len(chunks) > 1
        for previous, current in zip(chunks, chunks[1:]):
            assert current.overlap_length == 10
            assert current.text[:10] == previous.text[-10:]

    @pytest.mark.parametrize("chunk_size, overlap", [(30, 5), (60, 10), (100, 40), (15, 14)])
    def test_reconstruction(self, chunk_size, overlap):
        chunks = TextChunker().chunk_text(PARAGRAPHS, ChunkingOptions(chunk_size, overlap))
        assert _reconstruct(chunks) == PARAGRAPHS

    def test_oversized_part_emitted_whole(self):
        long_part = "x" * 50
        text = f"short\n\n{long_part}\n\ntail"

        chunks = TextChunker().chunk_text(text, ChunkingOptions(chunk_size=20, overlap=0))

        assert [c.text for c in chunks] == ["short", long_part, "tail"]

    def test_total_chunks_restamped(self, chunker):
        chunks = chunker.chunk_text(PARAGRAPHS)

        assert [c.sequence_index for c in chunks] == list(range(len(chunks)))
        assert {c.total_chunks for c in chunks} == {len(chunks)}
        assert chunks[0].id == "chunk_0"

    def test_hash_and_token_count(self, chunker):
        chunk = chunker.chunk_text("Hello world")[0]

        assert chunk.chunk_hash == hashlib.sha256(b"Hello world").hexdigest()
        assert chunk.token_count == estimate_token_count("Hello world") > 0

    def test_empty_text(self, chunker):
        assert chunker.chunk_text("") == []

    def test_text_shorter_than_chunk(self, chunker):
        chunks = chunker.chunk_text("tiny")
        assert [c.text for c in chunks] == ["tiny"]
        assert chunks[0].total_chunks == 1

    @pytest.mark.parametrize("chunk_size, overlap", [(10, 10), (10, 20), (0, 0), (10, -1)])
    def test_invalid_options_rejected(self, chunk_size, overlap):
        with pytest.raises(ValidationError):
            ChunkingOptions(chunk_size=chunk_size, overlap=overlap)


class TestChunkByCharCount:
    @pytest.mark.parametrize(
        "text_length, chunk_size, overlap",
        [(0, 5, 0), (1, 5, 4), (10, 5, 0), (23, 5, 4), (100, 7, 3), (9, 10, 9), (50, 2, 1)],
    )
    def test_terminates_with_strictly_increasing_starts(self, text_length, chunk_size, overlap):
        text = "abcdefghij" * 10
        text = text[:text_length]

        chunks = TextChunker().chunk_by_char_count(text, chunk_size, overlap)

        starts = [c.start_offset for c in chunks]
        assert starts == sorted(set(starts))
        assert all(len(c.text) <= chunk_size for c in chunks)
        assert _reconstruct(chunks) == text

    def test_window_positions(self):
        chunks = TextChunker().chunk_by_char_count("abcdefghij", 4, 1)

        assert [c.text for c in chunks] == ["abcd", "defg", "ghij"]
        assert chunks[-1].end_offset == 10

    def test_overlap_not_smaller_than_size_rejected(self):
        with pytest.raises(ValidationError):
            TextChunker().chunk_by_char_count("abcdef", 3, 3)


class TestChunkBySentences:
    TEXT = "One. Two! Three? Four. Five."

    def test_groups_with_sentence_overlap(self):
        chunks = TextChunker().chunk_by_sentences(self.TEXT, sentences_per_chunk=2, overlap=1)

        assert [c.text for c in chunks] == ["One. Two!", "Two! Three?", "Three? Four.", "Four. Five."]
        assert all(c.metadata["sentence_count"] == 2 for c in chunks)

    def test_offsets_point_into_source(self):
        for chunk in TextChunker().chunk_by_sentences(self.TEXT, 3, 1):
            assert self.TEXT[chunk.start_offset : chunk.end_offset] == chunk.text

    def test_text_without_terminators_is_one_chunk(self):
        chunks = TextChunker().chunk_by_sentences("no punctuation here", 3, 1)
        assert [c.text for c in chunks] == ["no punctuation here"]

    def test_invalid_overlap(self):
        with pytest.raises(ValidationError):
            TextChunker().chunk_by_sentences(self.TEXT, 2, 2)


def test_validate_chunk_size():
    assert validate_chunk_size(1000)
    assert not validate_chunk_size(50)
    assert not validate_chunk_size(20000)
    assert validate_chunk_size(50, min_size=10, max_size=100)

"""
Vector math helpers shared by storage, retrieval and reranking.
"""

import math
from collections.abc import Sequence

from .errors import ValidationError


def vector_magnitude(vector: Sequence[float]) -> float:
    return math.sqrt(sum(x * x for x in vector))


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns 0.0 for empty, mismatched or zero-magnitude vectors.
    """
    if not vector_a or not vector_b or len(vector_a) != len(vector_b):
        return 0.0

    mag_a = vector_magnitude(vector_a)
    mag_b = vector_magnitude(vector_b)
    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0

    dot_product = sum(a * b for a, b in zip(vector_a, vector_b))
    return dot_product / (mag_a * mag_b)


def normalize(vector: Sequence[float]) -> list[float]:
    """Scale a vector to unit length (zero vectors are returned unchanged)."""
    magnitude = vector_magnitude(vector)
    if magnitude == 0.0:
        return list(vector)
    return [x / magnitude for x in vector]


def validate_embedding(embedding: Sequence[float], expected_dim: int) -> None:
    """
    Check an embedding against its collection's dimension.

    Raises:
        ValidationError: On dimension mismatch or non-finite values
    """
    if len(embedding) != expected_dim:
        raise ValidationError(
            f"Embedding dimension mismatch: expected {expected_dim}, got {len(embedding)}"
        )
    for i, value in enumerate(embedding):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError(f"Invalid embedding value at index {i}: {value!r}")


def hash_embedding(text: str, dim: int) -> list[float]:
    """
    Deterministic character-code embedding.

    Each character adds ``ord(c) / 1000`` to slot ``i % dim``; the result is
    L2-normalized. Used as a pseudo-query vector for keyed lookups where
    ranking does not matter.
    """
    embedding = [0.0] * dim
    for i, char in enumerate(text):
        embedding[i % dim] += ord(char) / 1000
    return normalize(embedding)

"""Similarity ranking."""

import math
from typing import Iterable, Sequence

from .document import Chunk, RankedChunk
from .exceptions import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Returns 0.0 if either vector has zero norm.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def rank(query_vector: Sequence[float], chunks: Iterable[Chunk]) -> list[RankedChunk]:
    """Score every chunk against the query and sort by descending similarity.

    Ties keep the original chunk order.

    Raises:
        DimensionMismatchError: If any chunk's embedding length differs
            from the query vector's
    """
    chunks = list(chunks)
    dimension = len(query_vector)

    for chunk in chunks:
        if len(chunk.embedding) != dimension:
            raise DimensionMismatchError(dimension, len(chunk.embedding), chunk.id)

    ranked = [
        RankedChunk(chunk=chunk, similarity=cosine_similarity(query_vector, chunk.embedding))
        for chunk in chunks
    ]
    # list.sort is stable
    ranked.sort(key=lambda r: r.similarity, reverse=True)

    return ranked

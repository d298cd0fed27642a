"""Retrieval confidence scoring."""

from .base import BaseConfidenceScorer
from .document import RankedChunk

MIN_CONFIDENCE = 30


class MeanTopKConfidence(BaseConfidenceScorer):
    """Mean similarity of the top chunks, scaled to 0-100.

    A heuristic with no calibration against answer correctness; swap in
    another ``BaseConfidenceScorer`` to change the gate.
    """

    def __init__(self, top_k: int = 3):
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        self.top_k = top_k

    def score(self, chunks: list[RankedChunk]) -> int:
        if not chunks:
            return 0

        top = chunks[:self.top_k]
        mean = sum(chunk.similarity for chunk in top) / len(top)
        return max(0, min(100, round(mean * 100)))


def confidence_level(confidence: int) -> str:
    """Map a confidence score to its presentation band."""
    if confidence >= 70:
        return "high"
    if confidence >= 50:
        return "medium"
    if confidence >= MIN_CONFIDENCE:
        return "medium-low"
    return "low"

"""Chunk selection with source diversity."""

import logging
import math

from .base import BaseSelector
from .document import RankedChunk

logger = logging.getLogger(__name__)

DIVERSITY_THRESHOLD = 0.35
FALLBACK_THRESHOLD = 0.3
# Chunks kept when nothing clears either threshold
MIN_FALLBACK_CHUNKS = 2


def select_chunks(
    ranked: list[RankedChunk],
    max_chunks: int = 4,
    diversity_threshold: float = DIVERSITY_THRESHOLD,
    fallback_threshold: float = FALLBACK_THRESHOLD,
) -> list[RankedChunk]:
    """Pick a bounded, source-diverse subset of ranked chunks.

    The first pass takes the best chunk of each distinct source that
    clears ``diversity_threshold``, up to half of ``max_chunks`` (rounded
    up, and never fewer than two). The second pass fills the remaining
    slots in rank order with any chunk clearing ``fallback_threshold``.
    If both passes come up empty the top chunks are taken regardless of
    score, so a non-empty input never produces an empty selection.

    Args:
        ranked: Chunks sorted by descending similarity
        max_chunks: Maximum number of chunks to return
        diversity_threshold: Minimum similarity for the diversity pass
        fallback_threshold: Minimum similarity for the fill pass

    Returns:
        Selected chunks sorted by descending similarity
    """
    if max_chunks < 1:
        raise ValueError("max_chunks must be at least 1")

    selected: list[RankedChunk] = []
    selected_ids: set[str] = set()
    seen_sources: set[str] = set()

    # At least two sources whenever two slots exist
    diversity_slots = max(math.ceil(max_chunks / 2), min(2, max_chunks))
    for candidate in ranked:
        if len(selected) >= diversity_slots:
            break
        if candidate.source in seen_sources or candidate.similarity < diversity_threshold:
            continue
        selected.append(candidate)
        selected_ids.add(candidate.id)
        seen_sources.add(candidate.source)

    for candidate in ranked:
        if len(selected) >= max_chunks:
            break
        if candidate.id in selected_ids or candidate.similarity < fallback_threshold:
            continue
        selected.append(candidate)
        selected_ids.add(candidate.id)

    if not selected:
        selected = list(ranked[:min(MIN_FALLBACK_CHUNKS, max_chunks)])

    selected.sort(key=lambda r: r.similarity, reverse=True)

    if selected:
        average = sum(r.similarity for r in selected) / len(selected)
        logger.info(
            f"Selected {len(selected)} of {len(ranked)} chunks "
            f"from {len({r.source for r in selected})} sources "
            f"(avg similarity: {average * 100:.1f}%)"
        )

    return selected


class SourceDiversitySelector(BaseSelector):
    """Selector that prefers one chunk per source before filling by rank.

    Pure top-k tends to return near-duplicate chunks of one document;
    this trades a little top-1 precision for multi-document coverage.
    """

    def __init__(
        self,
        diversity_threshold: float = DIVERSITY_THRESHOLD,
        fallback_threshold: float = FALLBACK_THRESHOLD,
    ):
        """Initialize the selector.

        Args:
            diversity_threshold: Minimum similarity for the diversity pass
            fallback_threshold: Minimum similarity for the fill pass
        """
        self.diversity_threshold = diversity_threshold
        self.fallback_threshold = fallback_threshold

    def select(self, ranked: list[RankedChunk], max_chunks: int) -> list[RankedChunk]:
        return select_chunks(
            ranked,
            max_chunks,
            self.diversity_threshold,
            self.fallback_threshold,
        )

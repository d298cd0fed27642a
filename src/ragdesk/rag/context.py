"""Prompt context assembly."""

import logging

from .document import RankedChunk

logger = logging.getLogger(__name__)

DEFAULT_CHAR_BUDGET = 2500
CHUNK_SEPARATOR = "\n\n=== === ===\n\n"


def format_part(position: int, chunk: RankedChunk) -> str:
    """Render one chunk with its provenance header."""
    relevance = chunk.similarity * 100
    header = f"[Source {position}: {chunk.source} - Relevance: {relevance:.1f}%]"
    return f"{header}\n{chunk.text.strip()}"


def assemble_context(
    chunks: list[RankedChunk],
    char_budget: int = DEFAULT_CHAR_BUDGET,
) -> str:
    """Concatenate chunks into a context block bounded by ``char_budget``.

    Chunks are added in the given order and assembly stops at the first
    one that would push the total past the budget. The first chunk is
    always included, even when it alone exceeds the budget.

    Args:
        chunks: Selected chunks in ranked order
        char_budget: Maximum context length in characters

    Returns:
        The assembled context string
    """
    parts: list[str] = []
    total_length = 0

    for position, chunk in enumerate(chunks, start=1):
        part = format_part(position, chunk)
        cost = len(part) + (len(CHUNK_SEPARATOR) if parts else 0)

        if parts and total_length + cost > char_budget:
            logger.info(f"Context size limit reached, using {len(parts)}/{len(chunks)} chunks")
            break

        parts.append(part)
        total_length += cost

    context = CHUNK_SEPARATOR.join(parts)
    logger.debug(f"Context assembled ({len(context)} characters from {len(parts)} chunks)")
    return context

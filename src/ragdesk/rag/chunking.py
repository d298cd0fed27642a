"""Document chunking."""

from typing import Iterator

from .base import BaseChunker

DEFAULT_CHUNK_SIZE = 300


def chunk_words(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """Yield chunks of up to ``chunk_size`` whitespace-delimited words.

    Words keep their original order and are joined by single spaces.
    The final chunk may be shorter. All-whitespace input yields nothing.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    words = text.split()
    for start in range(0, len(words), chunk_size):
        chunk = " ".join(words[start:start + chunk_size]).strip()
        if chunk:
            yield chunk


class WordChunker(BaseChunker):
    """Chunk documents into fixed word-count pieces without overlap.

    Simple and deterministic: the same text and chunk size always
    produce the same chunks.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        """Initialize the word chunker.

        Args:
            chunk_size: Maximum words per chunk
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.chunk_size = chunk_size

    def iter_chunks(self, text: str) -> Iterator[str]:
        """Lazily split text into word chunks."""
        return chunk_words(text, self.chunk_size)

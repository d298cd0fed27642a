"""
Test doubles shared across test modules.
"""

import re
from typing import Any

from ragdesk.rag import (
    BaseEmbedding,
    BaseGenerationBackend,
    Chunk,
    EmbeddingServiceUnavailableError,
    RankedChunk,
)

# Word -> concept dimension for the vocabulary embedding
CONCEPTS = {
    "stop": 0, "e-stop": 0, "estop": 0, "emergency": 0,
    "red": 1, "color": 1, "colour": 1, "yellow": 1,
    "button": 2, "buttons": 2, "pushbutton": 2,
    "guard": 3, "guards": 3, "fence": 3,
    "voltage": 4, "electrical": 4, "cable": 4,
}


class VocabularyEmbedding(BaseEmbedding):
    """Bag-of-concepts embedding with predictable similarities."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    @property
    def model_name(self) -> str:
        return "vocabulary"

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * 5
        for token in re.findall(r"[a-z0-9-]+", text.lower()):
            if token in CONCEPTS:
                vector[CONCEPTS[token]] += 1.0
        return vector


class FailingEmbedding(BaseEmbedding):
    """Embedding that fails on the n-th call."""

    def __init__(self, fail_on: int, dimension: int = 3):
        self.fail_on = fail_on
        self.dimension = dimension
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "failing"

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls == self.fail_on:
            raise EmbeddingServiceUnavailableError("Cannot connect to embedding service")
        return [float(self.calls), 1.0, 0.0][:self.dimension]


class StubBackend(BaseGenerationBackend):
    """Generation backend that records calls and replays scripted outcomes."""

    def __init__(self, name: str = "stub", outcomes: list[Any] | None = None):
        self.name = name
        self.outcomes = list(outcomes or [])
        self.calls: list[dict[str, Any]] = []

    async def chat(self, model, messages, *, timeout=None):
        self.calls.append({"model": model, "messages": messages, "timeout": timeout})
        outcome = self.outcomes.pop(0) if self.outcomes else "Generated answer"
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome


def make_chunk(
    source: str = "doc.txt",
    index: int = 1,
    embedding: list[float] | None = None,
    text: str | None = None,
) -> Chunk:
    return Chunk(
        id=Chunk.make_id(source, index),
        text=text or f"Text of {source} chunk {index}",
        embedding=embedding or [1.0, 0.0, 0.0],
        source=source,
        chunk_index=index,
        total_chunks=index,
    )


def ranked(source: str, index: int, similarity: float, text: str | None = None) -> RankedChunk:
    return RankedChunk(chunk=make_chunk(source, index, text=text), similarity=similarity)

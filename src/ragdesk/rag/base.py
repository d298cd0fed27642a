"""Base classes and abstract interfaces for retrieval components."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterator, Union

if TYPE_CHECKING:
    from .document import Document, RankedChunk


class BaseEmbedding(ABC):
    """Abstract base class for embedding clients.

    Embedding clients convert text into dense vector representations.
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingServiceError: If the embedding service fails
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""
        pass

    async def aclose(self) -> None:
        """Release any network resources."""
        return None


class BaseChunker(ABC):
    """Abstract base class for document chunkers.

    Chunkers split documents into smaller pieces for indexing.
    """

    @abstractmethod
    def iter_chunks(self, text: str) -> Iterator[str]:
        """Lazily split text into chunk strings.

        Args:
            text: Raw document text

        Yields:
            Non-empty chunk strings in document order
        """
        pass

    def chunk(self, document: "Document") -> list[str]:
        """Split a document into chunk strings."""
        return list(self.iter_chunks(document.text))


class BaseSelector(ABC):
    """Abstract base class for chunk selectors.

    Selectors pick the subset of ranked chunks used as context.
    """

    @abstractmethod
    def select(
        self,
        ranked: list["RankedChunk"],
        max_chunks: int,
    ) -> list["RankedChunk"]:
        """Select chunks from a ranked list.

        Args:
            ranked: Chunks sorted by descending similarity
            max_chunks: Maximum number of chunks to return

        Returns:
            Selected chunks sorted by descending similarity
        """
        pass


class BaseConfidenceScorer(ABC):
    """Abstract base class for retrieval confidence scoring."""

    @abstractmethod
    def score(self, chunks: list["RankedChunk"]) -> int:
        """Score the selected chunks.

        Args:
            chunks: Selected chunks sorted by descending similarity

        Returns:
            Confidence between 0 and 100
        """
        pass


class BaseGenerationBackend(ABC):
    """Abstract base class for language model backends."""

    name: str = "backend"

    @abstractmethod
    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        timeout: float | None = None,
    ) -> Union[str, dict[str, Any]]:
        """Send a chat request.

        Args:
            model: Model identifier
            messages: Role-structured messages; a message may carry
                an ``images`` list of base64 strings
            timeout: Request timeout in seconds

        Returns:
            Generated text, or a mapping with ``answer`` and optional
            ``thinking`` for structured responses

        Raises:
            GenerationConnectionError: If the backend is unavailable
            GenerationTimeoutError: If the request times out
            ImageRejectedError: If the backend refuses an image
            GenerationResponseError: If the response is malformed
        """
        pass

    async def aclose(self) -> None:
        """Release any network resources."""
        return None

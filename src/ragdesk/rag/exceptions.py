"""
Retrieval pipeline exceptions.
"""


class RAGError(Exception):
    """Base exception for retrieval pipeline errors."""

    user_message = "Something went wrong while answering your question."

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class StoreError(RAGError):
    """Base exception for embedding table errors."""

    user_message = (
        "The document index is not ready. "
        "Please index your documents and try again."
    )


class StoreNotFoundError(StoreError):
    """Raised when the embedding table does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Embeddings file not found: {path}")


class CorruptTableError(StoreError):
    """Raised when the embedding table cannot be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Embeddings file '{path}' is corrupt: {reason}")


class DimensionMismatchError(RAGError):
    """Raised when vectors of different dimensionality are compared."""

    user_message = (
        "The document index was built with a different embedding model. "
        "Please re-index your documents."
    )

    def __init__(self, expected: int, actual: int, chunk_id: str | None = None):
        self.expected = expected
        self.actual = actual
        self.chunk_id = chunk_id
        where = f" (chunk '{chunk_id}')" if chunk_id else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )


class EmptyQuestionError(RAGError):
    """Raised when the question is empty or whitespace only."""

    user_message = "Please enter a question."

    def __init__(self, message: str = "Question is empty"):
        super().__init__(message)


class EmbeddingServiceError(RAGError):
    """Raised when the embedding service fails."""

    user_message = (
        "Could not reach the embedding service. "
        "Make sure it is running and try again."
    )


class EmbeddingServiceUnavailableError(EmbeddingServiceError):
    """Raised when the embedding service cannot be reached."""


class EmbeddingResponseError(EmbeddingServiceError):
    """Raised when the embedding service returns an unexpected body."""


class GenerationError(RAGError):
    """Base exception for language model errors."""

    user_message = "The language model could not generate an answer."


class GenerationConnectionError(GenerationError):
    """Raised when a generation backend is unavailable."""

    def __init__(self, backend: str, message: str = "Connection refused"):
        self.backend = backend
        super().__init__(f"Backend '{backend}' unavailable: {message}")


class GenerationTimeoutError(GenerationError, TimeoutError):
    """Raised when a generation call does not finish in time."""

    user_message = "The language model took too long to respond. Please try again."

    def __init__(self, backend: str, timeout: float | None = None):
        self.backend = backend
        self.timeout = timeout
        after = f" after {timeout:.1f}s" if timeout is not None else ""
        super().__init__(f"Backend '{backend}' timed out{after}")


class GenerationResponseError(GenerationError):
    """Raised when a generation backend returns a malformed response."""


class ImageRejectedError(GenerationError):
    """Raised when a backend refuses an attached image."""

    def __init__(self, backend: str, message: str = "Image input not supported"):
        self.backend = backend
        super().__init__(f"Backend '{backend}' rejected image: {message}")


class RequestCanceled(RAGError):
    """Raised when a request is canceled by the caller."""

    user_message = "Request canceled."

    def __init__(self, message: str = "Request canceled"):
        super().__init__(message)


class PipelineStateError(RAGError):
    """Raised on an illegal query state transition."""

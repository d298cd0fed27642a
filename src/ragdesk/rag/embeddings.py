"""Embedding client implementations."""

import asyncio
import hashlib
import struct
from typing import Optional

import httpx

from ragdesk.utils.logging import get_logger

from .base import BaseEmbedding
from .exceptions import EmbeddingResponseError, EmbeddingServiceUnavailableError

logger = get_logger(__name__)


class OllamaEmbedding(BaseEmbedding):
    """Embedding client for a local Ollama server.

    Calls ``POST /api/embed`` and returns the first vector of the
    response. Connection failures and HTTP errors are reported as
    ``EmbeddingServiceUnavailableError``; bodies without a usable vector
    as ``EmbeddingResponseError``.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        model: str = "all-minilm",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Ollama embedding client.

        Args:
            base_url: Ollama server URL
            model: Embedding model name
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def model_name(self) -> str:
        return self.model

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Embed a single text using Ollama."""
        if not text:
            raise ValueError("Text input is required")

        client = self._get_client()
        logger.debug(f"Embedding text: {text[:50]!r}")

        try:
            response = await client.post(
                "/api/embed",
                json={"model": self.model, "input": text},
            )
            response.raise_for_status()
        except httpx.ConnectError as e:
            raise EmbeddingServiceUnavailableError(
                f"Cannot connect to Ollama at {self.base_url}"
            ) from e
        except httpx.TimeoutException as e:
            raise EmbeddingServiceUnavailableError(
                f"Ollama embedding request timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingServiceUnavailableError(
                f"Ollama request failed with status {e.response.status_code}: "
                f"{e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingServiceUnavailableError(f"Ollama request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingResponseError("Ollama returned a non-JSON body") from e

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list) or not embeddings:
            raise EmbeddingResponseError("Invalid response from Ollama - no embeddings found")

        embedding = embeddings[0]
        if (
            not isinstance(embedding, list)
            or not embedding
            or not all(isinstance(v, (int, float)) for v in embedding)
        ):
            raise EmbeddingResponseError("Invalid response from Ollama - malformed embedding")

        return [float(v) for v in embedding]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LocalEmbedding(BaseEmbedding):
    """Local embedding model using sentence-transformers.

    Runs entirely on the local machine. Requires the 'local' extra.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        normalize: bool = True,
    ):
        """Initialize the local embedding model.

        Args:
            model_name: Name of the sentence-transformers model
            device: Device to run on (cuda, cpu, mps). Auto-detected if None.
            normalize: Whether to normalize embeddings
        """
        self._model_name = model_name
        self.device = device
        self.normalize = normalize
        self._model = None

    @property
    def model_name(self) -> str:
        return self._model_name

    def _get_model(self):
        """Get or load the sentence-transformers model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "Local embedding requires 'sentence-transformers'. "
                    "Install it with: pip install ragdesk[local]"
                )

            self._model = SentenceTransformer(self._model_name, device=self.device)
            logger.info(f"Loaded embedding model: {self._model_name}")
        return self._model

    async def embed(self, text: str) -> list[float]:
        """Embed a single text using the local model.

        Raises:
            EmbeddingServiceUnavailableError: If the model cannot be
                loaded or fails to encode
        """
        try:
            model = self._get_model()
        except ImportError as e:
            raise EmbeddingServiceUnavailableError(str(e)) from e
        except Exception as e:
            raise EmbeddingServiceUnavailableError(
                f"Failed to load embedding model '{self._model_name}': {e}"
            ) from e

        # Encoding is CPU bound
        loop = asyncio.get_running_loop()
        try:
            embedding = await loop.run_in_executor(
                None,
                lambda: model.encode(
                    text,
                    normalize_embeddings=self.normalize,
                    convert_to_numpy=True,
                ),
            )
        except Exception as e:
            raise EmbeddingServiceUnavailableError(
                f"Embedding model '{self._model_name}' failed: {e}"
            ) from e

        return embedding.tolist()


class FakeEmbedding(BaseEmbedding):
    """Fake embedding that generates deterministic embeddings from text.

    Useful for tests and demos when you want predictable embeddings.
    The embedding is generated from the hash of the text.
    """

    def __init__(self, dimension: int = 384, seed: int = 42):
        """Initialize the fake embedding.

        Args:
            dimension: Dimension of the embedding vectors
            seed: Seed mixed into the hash for reproducibility
        """
        self.dimension = dimension
        self.seed = seed

    @property
    def model_name(self) -> str:
        return f"fake-{self.dimension}"

    def _hash_text(self, text: str) -> list[float]:
        """Generate a deterministic embedding from text hash."""
        embedding = []
        counter = 0
        while len(embedding) < self.dimension:
            digest = hashlib.sha256(f"{self.seed}:{counter}:{text}".encode()).digest()
            # Eight unsigned 32-bit ints per digest, scaled to [-1, 1]
            for (value,) in struct.iter_unpack(">I", digest):
                embedding.append(value / 0xFFFFFFFF * 2.0 - 1.0)
            counter += 1

        return embedding[:self.dimension]

    async def embed(self, text: str) -> list[float]:
        return self._hash_text(text)

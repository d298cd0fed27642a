"""
Shared HTTP plumbing for generation backends.
"""

from typing import Any

import httpx

from ragdesk.rag.base import BaseGenerationBackend
from ragdesk.rag.exceptions import (
    GenerationConnectionError,
    GenerationError,
    GenerationResponseError,
    GenerationTimeoutError,
    ImageRejectedError,
)
from ragdesk.utils.logging import get_logger

logger = get_logger(__name__)

# Fragments of error bodies returned when a model refuses image input
IMAGE_ERROR_MARKERS = ("image", "vision", "multimodal")


class HTTPGenerationBackend(BaseGenerationBackend):
    """
    Base class for backends that speak JSON over HTTP.

    Maps transport failures onto the generation error taxonomy.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        timeout: float | None,
    ) -> dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body."""
        client = self._get_client()

        try:
            response = await client.post(path, json=payload, timeout=timeout)
        except httpx.ConnectError as e:
            raise GenerationConnectionError(self.name, f"cannot connect to {self.base_url}") from e
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(self.name, timeout) from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Backend '{self.name}' request failed: {e}") from e

        if response.is_error:
            self._raise_for_status(response, payload)

        try:
            data = response.json()
        except ValueError as e:
            raise GenerationResponseError(f"Backend '{self.name}' returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise GenerationResponseError(f"Backend '{self.name}' returned an unexpected body")

        return data

    def _raise_for_status(self, response: httpx.Response, payload: dict[str, Any]) -> None:
        """Translate an HTTP error response into a generation error."""
        body = response.text[:500]
        logger.debug(f"{self.name} returned {response.status_code}: {body}")

        if (
            400 <= response.status_code < 500
            and _payload_has_images(payload)
            and any(marker in body.lower() for marker in IMAGE_ERROR_MARKERS)
        ):
            raise ImageRejectedError(self.name, body)

        if response.status_code in (502, 503, 504):
            raise GenerationConnectionError(self.name, f"status {response.status_code}")

        raise GenerationError(
            f"Backend '{self.name}' error: {response.status_code} - {body}"
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _payload_has_images(payload: dict[str, Any]) -> bool:
    for message in payload.get("messages", []):
        if message.get("images"):
            return True
        content = message.get("content")
        if isinstance(content, list) and any(
            part.get("type") == "image_url" for part in content if isinstance(part, dict)
        ):
            return True
    return False

"""
OpenAI-compatible chat backend (LM Studio and similar local servers).
"""

from typing import Any

import httpx

from ragdesk.providers.base import IMAGE_ERROR_MARKERS, _payload_has_images
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

# Error fragments reported by GPU servers whose device was lost
GPU_ERROR_MARKERS = ("ErrorDeviceLost", "vk::Queue", "Vulkan")


class OpenAICompatibleBackend(BaseGenerationBackend):
    """
    Generation backend for ``/chat/completions`` style servers.

    Talks to the server through the ``openai`` SDK (the 'openai' extra).
    A missing package and GPU driver failures are both reported as
    connection errors so the client falls back to the next backend in
    its chain.
    """

    name = "openai"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:1234/v1",
        api_key: str | None = "no-key-needed",
        served_model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key or "no-key-needed"
        self.served_model = served_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._transport = transport
        self._client = None

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install ragdesk[openai]"
                )

            http_client = None
            if self._transport is not None:
                http_client = httpx.AsyncClient(transport=self._transport)

            # The generation client owns retries and fallback
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
                http_client=http_client,
            )
        return self._client

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        timeout: float | None = None,
    ) -> str:
        """Send a non-streaming chat completion request."""
        try:
            client = self._get_client()
        except ImportError as e:
            raise GenerationConnectionError(self.name, str(e)) from e

        import openai

        params: dict[str, Any] = {
            "model": self.served_model or model,
            "messages": [_to_openai_message(m) for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if timeout is not None:
            params["timeout"] = timeout

        try:
            response = await client.chat.completions.create(**params)
        except openai.APITimeoutError as e:
            raise GenerationTimeoutError(self.name, timeout) from e
        except openai.APIConnectionError as e:
            raise GenerationConnectionError(self.name, f"cannot connect to {self.base_url}") from e
        except openai.APIStatusError as e:
            raise self._status_error(e, params) from e
        except openai.APIError as e:
            raise GenerationError(f"Backend '{self.name}' request failed: {e}") from e

        if not response.choices:
            raise GenerationResponseError("Invalid response - no choices returned")

        content = response.choices[0].message.content
        if not isinstance(content, str) or not content:
            raise GenerationResponseError("Invalid response - empty message content")

        return content

    def _status_error(self, error: Any, params: dict[str, Any]) -> GenerationError:
        """Translate an HTTP error status into a generation error."""
        body = error.response.text[:500]
        status = error.status_code
        logger.debug(f"{self.name} returned {status}: {body}")

        if any(marker in body for marker in GPU_ERROR_MARKERS):
            return GenerationConnectionError(self.name, "GPU driver error")

        if (
            400 <= status < 500
            and _payload_has_images(params)
            and any(marker in body.lower() for marker in IMAGE_ERROR_MARKERS)
        ):
            return ImageRejectedError(self.name, body)

        if status in (502, 503, 504):
            return GenerationConnectionError(self.name, f"status {status}")

        return GenerationError(f"Backend '{self.name}' error: {status} - {body}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def _to_openai_message(message: dict[str, Any]) -> dict[str, Any]:
    """Convert a message with base64 ``images`` into content parts."""
    images = message.get("images")
    if not images:
        return {"role": message["role"], "content": message["content"]}

    parts: list[dict[str, Any]] = [{"type": "text", "text": message["content"]}]
    for image in images:
        parts.append({
            "type": "image_url",
            "image_url": {"url": f"data:image/png;base64,{image}"},
        })
    return {"role": message["role"], "content": parts}

"""
Ollama chat backend.
"""

import json
from typing import Any

import httpx

from ragdesk.providers.base import HTTPGenerationBackend
from ragdesk.rag.exceptions import GenerationResponseError

# JSON schema for structured "thinking + answer" responses
ANSWER_SCHEMA = {
    "type": "object",
    "properties": {
        "thinking": {"type": "string"},
        "answer": {"type": "string"},
    },
    "required": ["answer"],
}


class OllamaChatBackend(HTTPGenerationBackend):
    """
    Generation backend for the Ollama ``/api/chat`` endpoint.

    Images are passed through as base64 strings in each message's
    ``images`` list, which is the shape Ollama expects.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        structured: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url, transport=transport)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.structured = structured

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        timeout: float | None = None,
    ) -> str | dict[str, Any]:
        """Send a non-streaming chat request to Ollama."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        if self.structured:
            payload["format"] = ANSWER_SCHEMA

        data = await self._post("/api/chat", payload, timeout)

        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise GenerationResponseError("Invalid response from Ollama - no message content found")

        if not self.structured:
            return content

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise GenerationResponseError("Ollama returned invalid structured output") from e

        if not isinstance(parsed, dict):
            raise GenerationResponseError("Ollama returned invalid structured output")
        return parsed

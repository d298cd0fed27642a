"""Generation orchestration: prompt messages, backend chain and cancellation."""

import asyncio
import base64
import logging
from typing import Any, Awaitable, Iterable, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel

from .base import BaseGenerationBackend
from .exceptions import (
    GenerationConnectionError,
    GenerationError,
    GenerationResponseError,
    GenerationTimeoutError,
    ImageRejectedError,
    RequestCanceled,
)
from .prompts import (
    IMAGE_DROPPED_NOTE,
    SYSTEM_PROMPT,
    TEXT_INSTRUCTION,
    USER_TEMPLATE,
    VISION_ADDENDUM,
    VISION_INSTRUCTION,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_VISION_MARKERS = ("llava", "bakllava", "moondream")


class CancelToken:
    """Cancellation signal shared between the caller and one request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class GenerationResult(BaseModel):
    """Normalized output of one generation."""
    answer: str
    reasoning: Optional[str] = None
    model: str
    backend: str


def build_messages(
    context: str,
    query: str,
    *,
    image: Optional[bytes] = None,
    vision: bool = False,
    system_prompt: str = SYSTEM_PROMPT,
) -> list[dict[str, Any]]:
    """Build the system and user messages for one question.

    An image is attached only when the model supports vision; otherwise
    it is dropped and the user message says so.
    """
    if image is not None and vision:
        return [
            {"role": "system", "content": f"{system_prompt}\n\n{VISION_ADDENDUM}"},
            {
                "role": "user",
                "content": USER_TEMPLATE.format(
                    context=context, query=query, instruction=VISION_INSTRUCTION
                ),
                "images": [base64.b64encode(image).decode("ascii")],
            },
        ]

    instruction = IMAGE_DROPPED_NOTE if image is not None else TEXT_INSTRUCTION
    return [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": USER_TEMPLATE.format(context=context, query=query, instruction=instruction),
        },
    ]


def strip_images(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Remove images and note their absence on the last user message."""
    stripped = [{k: v for k, v in message.items() if k != "images"} for message in messages]
    for message in reversed(stripped):
        if message.get("role") == "user":
            message["content"] = f"{message['content']}\n\n{IMAGE_DROPPED_NOTE}"
            break
    return stripped


def _has_images(messages: Iterable[Mapping[str, Any]]) -> bool:
    return any(message.get("images") for message in messages)


def normalize_response(response: Any, model: str, backend: str) -> GenerationResult:
    """Turn a plain or structured backend response into a result."""
    if isinstance(response, str):
        return GenerationResult(answer=response, model=model, backend=backend)

    if isinstance(response, Mapping):
        answer = response.get("answer")
        if isinstance(answer, str):
            reasoning = response.get("thinking", response.get("reasoning"))
            return GenerationResult(
                answer=answer,
                reasoning=reasoning if isinstance(reasoning, str) else None,
                model=model,
                backend=backend,
            )

    raise GenerationResponseError(f"Backend '{backend}' returned an unusable response")


async def run_cancellable(
    operation: Awaitable[T],
    cancel_token: Optional[CancelToken],
    timeout: Optional[float],
    backend: str,
) -> T:
    """Await ``operation`` unless it is canceled or times out first.

    On cancellation or timeout the task running the operation is
    cancelled, which aborts any in-flight HTTP request.

    Raises:
        RequestCanceled: If the token fires first
        GenerationTimeoutError: If the timeout elapses first
    """
    task = asyncio.ensure_future(operation)
    waiters: set[asyncio.Future] = {task}
    cancel_waiter = None
    if cancel_token is not None:
        cancel_waiter = asyncio.ensure_future(cancel_token.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
            try:
                await cancel_waiter
            except asyncio.CancelledError:
                pass

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Aborted request to '{backend}' raised {e!r}")

    if cancel_token is not None and cancel_token.cancelled:
        raise RequestCanceled()
    raise GenerationTimeoutError(backend, timeout)


class GenerationClient:
    """Language model client with an ordered chain of backends.

    Backends are tried in order and an unreachable backend hands over to
    the next one. A timeout allows exactly one more attempt: the
    fallback model on the same backend when one is configured, else the
    next backend. Any other error propagates.

    Example:
        ```python
        client = GenerationClient(
            [OpenAICompatibleBackend(), OllamaChatBackend()],
            fallback_model="qwen2:0.5b",
        )
        result = await client.generate("llama3", messages)
        ```
    """

    def __init__(
        self,
        backends: Sequence[BaseGenerationBackend],
        fallback_model: Optional[str] = None,
        timeout: float = 120.0,
        vision_markers: Iterable[str] = DEFAULT_VISION_MARKERS,
    ):
        """Initialize the generation client.

        Args:
            backends: Backends in order of preference
            fallback_model: Model for a single retry after a timeout
            timeout: Default per-attempt timeout in seconds
            vision_markers: Model name fragments that indicate vision support
        """
        if not backends:
            raise ValueError("At least one generation backend is required")

        self.backends = list(backends)
        self.fallback_model = fallback_model
        self.timeout = timeout
        self.vision_markers = tuple(marker.lower() for marker in vision_markers)

    def supports_vision(self, model: str) -> bool:
        """Whether the model accepts images."""
        name = model.lower()
        return any(marker in name for marker in self.vision_markers)

    async def generate(
        self,
        model: str,
        messages: list[dict[str, Any]],
        cancel_token: Optional[CancelToken] = None,
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """Generate a response, falling back through the backend chain.

        Raises:
            RequestCanceled: If the request is canceled
            GenerationTimeoutError: If every attempt timed out
            GenerationConnectionError: If no backend is reachable
            GenerationError: For any other backend failure
        """
        if not messages:
            raise ValueError("Messages must be a non-empty list")
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCanceled()

        timeout = self.timeout if timeout is None else timeout
        last_error: Optional[GenerationError] = None

        for index, backend in enumerate(self.backends):
            try:
                return await self._attempt(backend, model, messages, cancel_token, timeout)
            except GenerationConnectionError as e:
                logger.warning(f"{e.message}, trying next backend")
                last_error = e
            except GenerationTimeoutError as e:
                return await self._retry_after_timeout(
                    e, index, model, messages, cancel_token, timeout
                )

        raise last_error

    async def _retry_after_timeout(
        self,
        error: GenerationTimeoutError,
        index: int,
        model: str,
        messages: list[dict[str, Any]],
        cancel_token: Optional[CancelToken],
        timeout: float,
    ) -> GenerationResult:
        """Make the single extra attempt allowed after a timeout.

        The fallback model is tried on the backend that timed out when one
        is configured; otherwise the next backend gets the same model. Any
        error from that attempt propagates.
        """
        if self.fallback_model and self.fallback_model != model:
            backend = self.backends[index]
            logger.warning(f"{error.message}, retrying once with fallback model {self.fallback_model}")
            return await self._attempt(backend, self.fallback_model, messages, cancel_token, timeout)

        if index + 1 < len(self.backends):
            backend = self.backends[index + 1]
            logger.warning(f"{error.message}, retrying once on {backend.name}")
            return await self._attempt(backend, model, messages, cancel_token, timeout)

        raise error

    async def _attempt(
        self,
        backend: BaseGenerationBackend,
        model: str,
        messages: list[dict[str, Any]],
        cancel_token: Optional[CancelToken],
        timeout: float,
    ) -> GenerationResult:
        """Run one backend call, retrying text-only if the image is refused."""
        logger.info(f"Generating response with {model} via {backend.name}")
        try:
            response = await run_cancellable(
                backend.chat(model, messages, timeout=timeout),
                cancel_token,
                timeout,
                backend.name,
            )
        except ImageRejectedError as e:
            if not _has_images(messages):
                raise
            logger.warning(f"{e.message}, retrying without image")
            response = await run_cancellable(
                backend.chat(model, strip_images(messages), timeout=timeout),
                cancel_token,
                timeout,
                backend.name,
            )

        return normalize_response(response, model, backend.name)

    async def aclose(self) -> None:
        for backend in self.backends:
            await backend.aclose()

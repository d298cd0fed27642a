"""Tests for generation orchestration and HTTP backends."""

import asyncio
import base64
import json

import httpx
import pytest

from ragdesk.providers import OllamaChatBackend, OpenAICompatibleBackend
from ragdesk.rag import (
    CancelToken,
    GenerationClient,
    GenerationConnectionError,
    GenerationError,
    GenerationResponseError,
    GenerationTimeoutError,
    ImageRejectedError,
    RequestCanceled,
    build_messages,
)
from ragdesk.rag.generation import normalize_response, strip_images
from ragdesk.rag.prompts import IMAGE_DROPPED_NOTE, SYSTEM_PROMPT, VISION_ADDENDUM

from helpers import StubBackend

IMAGE = b"\x89PNG fake image bytes"


async def never_finishes():
    await asyncio.sleep(10)
    return "late"


class TestBuildMessages:
    """Tests for prompt message construction."""

    def test_text_only(self):
        messages = build_messages("ctx", "Which color?")

        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[0]["content"] == SYSTEM_PROMPT
        assert messages[1]["content"].startswith("CONTEXT SOURCES:\nctx")
        assert "QUESTION: Which color?" in messages[1]["content"]
        assert "images" not in messages[1]

    def test_image_with_vision_model(self):
        messages = build_messages("ctx", "Is this compliant?", image=IMAGE, vision=True)

        assert VISION_ADDENDUM in messages[0]["content"]
        assert messages[1]["images"] == [base64.b64encode(IMAGE).decode("ascii")]

    def test_image_dropped_without_vision(self):
        messages = build_messages("ctx", "Is this compliant?", image=IMAGE, vision=False)

        assert "images" not in messages[1]
        assert IMAGE_DROPPED_NOTE in messages[1]["content"]
        assert VISION_ADDENDUM not in messages[0]["content"]

    def test_custom_system_prompt(self):
        messages = build_messages("ctx", "q", system_prompt="Be brief.")
        assert messages[0]["content"] == "Be brief."

    def test_strip_images(self):
        messages = build_messages("ctx", "q", image=IMAGE, vision=True)
        stripped = strip_images(messages)

        assert all("images" not in m for m in stripped)
        assert stripped[1]["content"].endswith(IMAGE_DROPPED_NOTE)
        assert "images" in messages[1]


class TestNormalizeResponse:
    """Tests for response normalization."""

    def test_plain_text(self):
        result = normalize_response("Red.", "qwen2:0.5b", "ollama")
        assert result.answer == "Red."
        assert result.reasoning is None
        assert result.model == "qwen2:0.5b"
        assert result.backend == "ollama"

    def test_structured(self):
        result = normalize_response(
            {"thinking": "EN ISO 13850 says red.", "answer": "Red."}, "m", "ollama"
        )
        assert result.answer == "Red."
        assert result.reasoning == "EN ISO 13850 says red."

    @pytest.mark.parametrize("response", [42, None, {"thinking": "no answer"}, ["Red."]])
    def test_unusable(self, response):
        with pytest.raises(GenerationResponseError):
            normalize_response(response, "m", "ollama")


class TestGenerationClient:
    """Tests for the backend chain."""

    def test_requires_backends(self):
        with pytest.raises(ValueError):
            GenerationClient([])

    def test_supports_vision(self):
        client = GenerationClient([StubBackend()])
        assert client.supports_vision("llava:13b")
        assert client.supports_vision("BakLLaVA")
        assert client.supports_vision("moondream:latest")
        assert not client.supports_vision("qwen2:0.5b")

    @pytest.mark.asyncio
    async def test_generate(self):
        backend = StubBackend(outcomes=["Emergency stops are red."])
        client = GenerationClient([backend])

        result = await client.generate("qwen2:0.5b", build_messages("ctx", "q"))

        assert result.answer == "Emergency stops are red."
        assert result.backend == "stub"
        assert backend.calls[0]["model"] == "qwen2:0.5b"

    @pytest.mark.asyncio
    async def test_empty_messages(self):
        with pytest.raises(ValueError):
            await GenerationClient([StubBackend()]).generate("m", [])

    @pytest.mark.asyncio
    async def test_falls_back_on_connection_error(self):
        first = StubBackend("lmstudio", [GenerationConnectionError("lmstudio", "refused")])
        second = StubBackend("ollama", ["From Ollama"])
        client = GenerationClient([first, second])

        result = await client.generate("m", build_messages("ctx", "q"))

        assert result.answer == "From Ollama"
        assert result.backend == "ollama"
        assert len(first.calls) == 1
        assert len(second.calls) == 1

    @pytest.mark.asyncio
    async def test_all_backends_unreachable(self):
        client = GenerationClient([
            StubBackend("a", [GenerationConnectionError("a", "refused")]),
            StubBackend("b", [GenerationConnectionError("b", "refused")]),
        ])
        with pytest.raises(GenerationConnectionError):
            await client.generate("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        first = StubBackend("a", [GenerationResponseError("bad body")])
        second = StubBackend("b")
        client = GenerationClient([first, second])

        with pytest.raises(GenerationResponseError):
            await client.generate("m", build_messages("ctx", "q"))
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        backend = StubBackend(outcomes=[never_finishes])
        client = GenerationClient([backend], timeout=0.05)

        with pytest.raises(GenerationTimeoutError) as exc_info:
            await client.generate("m", build_messages("ctx", "q"))

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.user_message.endswith("Please try again.")

    @pytest.mark.asyncio
    async def test_timeout_retries_fallback_model_once(self):
        backend = StubBackend(outcomes=[never_finishes, "Small model answer"])
        client = GenerationClient([backend], fallback_model="qwen2:0.5b", timeout=0.05)

        result = await client.generate("llama3:70b", build_messages("ctx", "q"))

        assert result.answer == "Small model answer"
        assert result.model == "qwen2:0.5b"
        assert [c["model"] for c in backend.calls] == ["llama3:70b", "qwen2:0.5b"]

    @pytest.mark.asyncio
    async def test_fallback_model_timeout_is_final(self):
        backend = StubBackend(outcomes=[never_finishes, never_finishes, "unreachable"])
        client = GenerationClient([backend], fallback_model="qwen2:0.5b", timeout=0.05)

        with pytest.raises(GenerationTimeoutError):
            await client.generate("llama3:70b", build_messages("ctx", "q"))
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_no_fallback_for_same_model(self):
        backend = StubBackend(outcomes=[never_finishes, "unreachable"])
        client = GenerationClient([backend], fallback_model="qwen2:0.5b", timeout=0.05)

        with pytest.raises(GenerationTimeoutError):
            await client.generate("qwen2:0.5b", build_messages("ctx", "q"))
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_with_fallback_model_skips_next_backend(self):
        first = StubBackend("lmstudio", [never_finishes, never_finishes])
        second = StubBackend("ollama", [never_finishes])
        client = GenerationClient([first, second], fallback_model="qwen2:0.5b", timeout=0.05)

        with pytest.raises(GenerationTimeoutError):
            await client.generate("llama3:70b", build_messages("ctx", "q"))

        assert [c["model"] for c in first.calls] == ["llama3:70b", "qwen2:0.5b"]
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_timeout_moves_to_next_backend_once(self):
        first = StubBackend("lmstudio", [never_finishes])
        second = StubBackend("ollama", [never_finishes])
        third = StubBackend("spare", ["unreachable"])
        client = GenerationClient([first, second, third], timeout=0.05)

        with pytest.raises(GenerationTimeoutError):
            await client.generate("m", build_messages("ctx", "q"))

        assert len(first.calls) == 1
        assert len(second.calls) == 1
        assert third.calls == []

    @pytest.mark.asyncio
    async def test_timeout_then_next_backend_answers(self):
        first = StubBackend("lmstudio", [never_finishes])
        second = StubBackend("ollama", ["From Ollama"])
        client = GenerationClient([first, second], timeout=0.05)

        result = await client.generate("m", build_messages("ctx", "q"))

        assert result.backend == "ollama"
        assert second.calls[0]["model"] == "m"

    @pytest.mark.asyncio
    async def test_cancel_token_leaves_no_pending_tasks(self):
        backend = StubBackend(outcomes=["Answer"])
        client = GenerationClient([backend])

        await client.generate("m", build_messages("ctx", "q"), cancel_token=CancelToken())

        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current and not t.done()]
        assert pending == []

    @pytest.mark.asyncio
    async def test_per_call_timeout_override(self):
        backend = StubBackend(outcomes=[never_finishes])
        client = GenerationClient([backend], timeout=60.0)

        with pytest.raises(GenerationTimeoutError):
            await client.generate("m", build_messages("ctx", "q"), timeout=0.05)
        assert backend.calls[0]["timeout"] == 0.05

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_call(self):
        aborted = []

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                aborted.append(True)
                raise
            return "late"

        backend = StubBackend(outcomes=[slow])
        client = GenerationClient([backend], timeout=30.0)
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(RequestCanceled):
            await client.generate("m", build_messages("ctx", "q"), cancel_token=token)

        assert aborted == [True]
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        backend = StubBackend()
        token = CancelToken()
        token.cancel()

        with pytest.raises(RequestCanceled):
            await GenerationClient([backend]).generate(
                "m", build_messages("ctx", "q"), cancel_token=token
            )
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_image_rejected_retries_text_only(self):
        backend = StubBackend(outcomes=[
            ImageRejectedError("stub", "model does not support images"),
            "Text-only answer",
        ])
        client = GenerationClient([backend])
        messages = build_messages("ctx", "q", image=IMAGE, vision=True)

        result = await client.generate("llava", messages)

        assert result.answer == "Text-only answer"
        retried = backend.calls[1]["messages"]
        assert all("images" not in m for m in retried)
        assert IMAGE_DROPPED_NOTE in retried[-1]["content"]

    @pytest.mark.asyncio
    async def test_image_rejected_without_image_propagates(self):
        backend = StubBackend(outcomes=[ImageRejectedError("stub", "vision error")])
        with pytest.raises(ImageRejectedError):
            await GenerationClient([backend]).generate("m", build_messages("ctx", "q"))


def json_handler(body, status=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body)
    return handler


class TestOllamaChatBackend:
    """Tests for the Ollama chat backend."""

    @pytest.mark.asyncio
    async def test_chat(self):
        seen = []
        transport = httpx.MockTransport(json_handler({"message": {"content": "Red."}}, seen=seen))
        backend = OllamaChatBackend(temperature=0.2, max_tokens=50, transport=transport)

        answer = await backend.chat("qwen2:0.5b", build_messages("ctx", "q"), timeout=5.0)
        await backend.aclose()

        payload = json.loads(seen[0].content)
        assert answer == "Red."
        assert seen[0].url.path == "/api/chat"
        assert payload["model"] == "qwen2:0.5b"
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0.2, "num_predict": 50}
        assert "format" not in payload

    @pytest.mark.asyncio
    async def test_structured(self):
        seen = []
        content = json.dumps({"thinking": "Clause 4.3", "answer": "Red."})
        transport = httpx.MockTransport(json_handler({"message": {"content": content}}, seen=seen))
        backend = OllamaChatBackend(structured=True, transport=transport)

        result = await backend.chat("qwen2:0.5b", build_messages("ctx", "q"))

        assert result == {"thinking": "Clause 4.3", "answer": "Red."}
        assert json.loads(seen[0].content)["format"]["required"] == ["answer"]

    @pytest.mark.asyncio
    async def test_structured_invalid_json(self):
        transport = httpx.MockTransport(json_handler({"message": {"content": "not json"}}))
        backend = OllamaChatBackend(structured=True, transport=transport)

        with pytest.raises(GenerationResponseError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_missing_content(self):
        backend = OllamaChatBackend(transport=httpx.MockTransport(json_handler({"done": True})))
        with pytest.raises(GenerationResponseError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        backend = OllamaChatBackend(transport=httpx.MockTransport(handler))
        with pytest.raises(GenerationConnectionError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        backend = OllamaChatBackend(transport=httpx.MockTransport(handler))
        with pytest.raises(GenerationTimeoutError):
            await backend.chat("m", build_messages("ctx", "q"), timeout=1.0)

    @pytest.mark.asyncio
    async def test_service_unavailable(self):
        backend = OllamaChatBackend(
            transport=httpx.MockTransport(json_handler({"error": "loading"}, status=503))
        )
        with pytest.raises(GenerationConnectionError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_server_error(self):
        backend = OllamaChatBackend(
            transport=httpx.MockTransport(json_handler({"error": "model not found"}, status=404))
        )
        with pytest.raises(GenerationError) as exc_info:
            await backend.chat("m", build_messages("ctx", "q"))
        assert not isinstance(exc_info.value, GenerationConnectionError)

    @pytest.mark.asyncio
    async def test_image_rejected(self):
        transport = httpx.MockTransport(
            json_handler({"error": "model does not support images"}, status=400)
        )
        backend = OllamaChatBackend(transport=transport)

        with pytest.raises(ImageRejectedError):
            await backend.chat("m", build_messages("ctx", "q", image=IMAGE, vision=True))

    @pytest.mark.asyncio
    async def test_chain_retries_text_only_after_rejection(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            if any(m.get("images") for m in seen[-1]["messages"]):
                return httpx.Response(400, json={"error": "this model is missing vision support"})
            return httpx.Response(200, json={"message": {"content": "Text answer"}})

        client = GenerationClient([OllamaChatBackend(transport=httpx.MockTransport(handler))])
        result = await client.generate(
            "llava", build_messages("ctx", "q", image=IMAGE, vision=True)
        )
        await client.aclose()

        assert result.answer == "Text answer"
        assert len(seen) == 2


def completion(content, model="loaded-model"):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
    }


class TestOpenAICompatibleBackend:
    """Tests for the OpenAI-compatible backend."""

    @pytest.mark.asyncio
    async def test_chat(self):
        seen = []
        backend = OpenAICompatibleBackend(
            served_model="loaded-model",
            transport=httpx.MockTransport(json_handler(completion("Red."), seen=seen)),
        )

        answer = await backend.chat("llama3", build_messages("ctx", "q"), timeout=30.0)
        await backend.aclose()

        payload = json.loads(seen[0].content)
        assert answer == "Red."
        assert seen[0].url.path == "/v1/chat/completions"
        assert seen[0].headers["authorization"] == "Bearer no-key-needed"
        assert payload["model"] == "loaded-model"
        assert payload["max_tokens"] == 1000
        assert payload["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_uses_requested_model_without_served_model(self):
        seen = []
        backend = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler(completion("ok"), seen=seen))
        )

        await backend.chat("llama3", build_messages("ctx", "q"))

        assert json.loads(seen[0].content)["model"] == "llama3"

    @pytest.mark.asyncio
    async def test_images_become_content_parts(self):
        seen = []
        backend = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler(completion("ok"), seen=seen))
        )

        await backend.chat("llava", build_messages("ctx", "q", image=IMAGE, vision=True))

        user = json.loads(seen[0].content)["messages"][1]
        assert user["content"][0]["type"] == "text"
        encoded = base64.b64encode(IMAGE).decode("ascii")
        assert user["content"][1] == {
            "type": "image_url",
            "image_url": {"url": f"data:image/png;base64,{encoded}"},
        }

    @pytest.mark.asyncio
    async def test_gpu_error_is_connection_error(self):
        body = {"error": "vk::Queue::submit: ErrorDeviceLost"}
        backend = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler(body, status=500))
        )
        with pytest.raises(GenerationConnectionError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_server_error(self):
        seen = []
        backend = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler({"error": "model crashed"}, status=500, seen=seen))
        )
        with pytest.raises(GenerationError) as exc_info:
            await backend.chat("m", build_messages("ctx", "q"))

        assert not isinstance(exc_info.value, GenerationConnectionError)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_image_rejected(self):
        body = {"error": "Model does not support image input"}
        backend = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler(body, status=400))
        )
        with pytest.raises(ImageRejectedError):
            await backend.chat("m", build_messages("ctx", "q", image=IMAGE, vision=True))

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        backend = OpenAICompatibleBackend(transport=httpx.MockTransport(handler))
        with pytest.raises(GenerationConnectionError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        backend = OpenAICompatibleBackend(transport=httpx.MockTransport(handler))
        with pytest.raises(GenerationTimeoutError):
            await backend.chat("m", build_messages("ctx", "q"), timeout=1.0)

    @pytest.mark.asyncio
    async def test_missing_package_is_connection_error(self, monkeypatch):
        backend = OpenAICompatibleBackend()

        def not_installed():
            raise ImportError("openai package not installed.")

        monkeypatch.setattr(backend, "_get_client", not_installed)

        with pytest.raises(GenerationConnectionError) as exc_info:
            await backend.chat("m", build_messages("ctx", "q"))
        assert "openai package not installed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_no_choices(self):
        body = completion("unused")
        body["choices"] = []
        backend = OpenAICompatibleBackend(transport=httpx.MockTransport(json_handler(body)))
        with pytest.raises(GenerationResponseError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_empty_content(self):
        backend = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler(completion("")))
        )
        with pytest.raises(GenerationResponseError):
            await backend.chat("m", build_messages("ctx", "q"))

    @pytest.mark.asyncio
    async def test_gpu_failure_falls_back_to_ollama(self):
        lmstudio = OpenAICompatibleBackend(
            transport=httpx.MockTransport(json_handler({"error": "Vulkan device lost"}, status=500))
        )
        ollama = OllamaChatBackend(
            transport=httpx.MockTransport(json_handler({"message": {"content": "From Ollama"}}))
        )
        client = GenerationClient([lmstudio, ollama])

        result = await client.generate("qwen2:0.5b", build_messages("ctx", "q"))
        await client.aclose()

        assert result.answer == "From Ollama"
        assert result.backend == "ollama"

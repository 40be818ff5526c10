"""Tests for the Gemini and Ollama gateways using fake SDK clients."""

import asyncio
import base64
from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors as genai_errors
from ollama import ResponseError

from vizprompts.config import InferenceConfig
from vizprompts.errors import BackendRefusalError, BackendUnavailableError
from vizprompts.schemas.analysis import TEXT_SHAPE, AnalysisRequest, analysis_shape
from vizprompts.schemas.media import Frame
from vizprompts.services.inference import get_gateway
from vizprompts.services.inference.gemini_gateway import GeminiGateway
from vizprompts.services.inference.ollama_gateway import OllamaGateway


def _frames(count: int = 3) -> tuple[Frame, ...]:
    return tuple(
        Frame(data=f"frame-{i}".encode(), mime_type="image/png", index=i, timestamp=float(i))
        for i in range(count)
    )


def _request(frames=(), shape=None, temperature=None) -> AnalysisRequest:
    return AnalysisRequest(
        instruction="You are a director.",
        content="Describe the frames.",
        frames=frames,
        shape=shape,
        temperature=temperature,
    )


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

class FakeModels:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.result, Exception):
            raise self.result
        if callable(self.result):
            return await self.result()
        return self.result


def _genai_client(result):
    models = FakeModels(result)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


def _genai_response(text):
    return SimpleNamespace(text=text, prompt_feedback=None, candidates=[])


class TestGeminiGateway:
    @pytest.mark.asyncio
    async def test_sends_frames_in_order_after_content(self):
        client, models = _genai_client(_genai_response('{"ok": true}'))
        gateway = GeminiGateway(client, "gemini-2.5-flash")

        text = await gateway.infer(_request(frames=_frames(3), shape=analysis_shape()))

        assert text == '{"ok": true}'
        call = models.calls[0]
        assert call["model"] == "gemini-2.5-flash"
        parts = call["contents"][0].parts
        assert parts[0].text == "Describe the frames."
        assert [p.inline_data.data for p in parts[1:]] == [b"frame-0", b"frame-1", b"frame-2"]
        assert all(p.inline_data.mime_type == "image/png" for p in parts[1:])

    @pytest.mark.asyncio
    async def test_json_shape_sets_response_schema(self):
        client, models = _genai_client(_genai_response("{}"))
        gateway = GeminiGateway(client, "gemini-2.5-flash")

        await gateway.infer(_request(shape=analysis_shape(), temperature=0.3))

        config = models.calls[0]["config"]
        assert config.system_instruction == "You are a director."
        assert config.response_mime_type == "application/json"
        assert config.response_schema is not None
        assert config.temperature == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_text_shape_has_no_schema(self):
        client, models = _genai_client(_genai_response("A prompt."))
        gateway = GeminiGateway(client, "gemini-2.5-flash", temperature=0.9)

        await gateway.infer(_request(shape=TEXT_SHAPE))

        config = models.calls[0]["config"]
        assert config.response_mime_type is None
        assert config.response_schema is None
        assert config.temperature == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_api_error_maps_to_unavailable(self):
        error = genai_errors.APIError(
            503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}}
        )
        client, _ = _genai_client(error)
        gateway = GeminiGateway(client, "gemini-2.5-flash")

        with pytest.raises(BackendUnavailableError) as exc_info:
            await gateway.infer(_request())
        assert exc_info.value.details["status_code"] == 503

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_unavailable(self):
        client, _ = _genai_client(httpx.ConnectError("connection refused"))
        gateway = GeminiGateway(client, "gemini-2.5-flash")
        with pytest.raises(BackendUnavailableError):
            await gateway.infer(_request())

    @pytest.mark.asyncio
    async def test_timeout_maps_to_unavailable(self):
        async def slow():
            await asyncio.sleep(1)
            return _genai_response("late")

        client, _ = _genai_client(slow)
        gateway = GeminiGateway(client, "gemini-2.5-flash", timeout_seconds=0.01)
        with pytest.raises(BackendUnavailableError, match="timed out"):
            await gateway.infer(_request())

    @pytest.mark.asyncio
    async def test_empty_text_is_refusal(self):
        response = SimpleNamespace(
            text=None,
            prompt_feedback=SimpleNamespace(block_reason="SAFETY"),
            candidates=[],
        )
        client, _ = _genai_client(response)
        gateway = GeminiGateway(client, "gemini-2.5-flash")
        with pytest.raises(BackendRefusalError, match="SAFETY"):
            await gateway.infer(_request())


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class FakeOllamaClient:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _ollama_response(content):
    return SimpleNamespace(message=SimpleNamespace(content=content))


class TestOllamaGateway:
    @pytest.mark.asyncio
    async def test_json_request_shape(self):
        client = FakeOllamaClient(_ollama_response('{"ok": true}'))
        gateway = OllamaGateway("ollama/llava", client=client)

        text = await gateway.infer(_request(frames=_frames(2), shape=analysis_shape()))

        assert text == '{"ok": true}'
        assert gateway.model_id == "llava"
        call = client.calls[0]
        assert call["model"] == "llava"
        assert call["format"] == "json"
        assert call["stream"] is False
        system, user = call["messages"]
        assert system["role"] == "system"
        assert system["content"].startswith("You are a director.")
        assert "scene_analysis" in system["content"]
        assert user["images"] == [base64.b64encode(b"frame-0").decode(), base64.b64encode(b"frame-1").decode()]

    @pytest.mark.asyncio
    async def test_text_request_has_no_format(self):
        client = FakeOllamaClient(_ollama_response("A prompt."))
        gateway = OllamaGateway("llava", client=client)

        await gateway.infer(_request(shape=TEXT_SHAPE))

        call = client.calls[0]
        assert call["format"] is None
        assert "images" not in call["messages"][1]
        assert call["messages"][0]["content"] == "You are a director."

    @pytest.mark.asyncio
    async def test_response_error_maps_to_unavailable(self):
        client = FakeOllamaClient(ResponseError("model not found", 404))
        gateway = OllamaGateway("llava", client=client)
        with pytest.raises(BackendUnavailableError, match="404"):
            await gateway.infer(_request())

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_unavailable(self):
        client = FakeOllamaClient(ConnectionError("refused"))
        gateway = OllamaGateway("llava", client=client)
        with pytest.raises(BackendUnavailableError):
            await gateway.infer(_request())

    @pytest.mark.asyncio
    async def test_blank_content_is_refusal(self):
        client = FakeOllamaClient(_ollama_response("  "))
        gateway = OllamaGateway("llava", client=client)
        with pytest.raises(BackendRefusalError):
            await gateway.infer(_request())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_ollama_provider(self):
        gateway = get_gateway(InferenceConfig(provider="ollama", model="llava"))
        assert isinstance(gateway, OllamaGateway)

    def test_ollama_prefix_overrides_provider(self):
        gateway = get_gateway(InferenceConfig(provider="gemini", model="ollama/llava"))
        assert isinstance(gateway, OllamaGateway)
        assert gateway.model_id == "llava"

    def test_gemini_with_api_key(self):
        gateway = get_gateway(InferenceConfig(api_key="test-key"))
        assert isinstance(gateway, GeminiGateway)
        assert gateway.model_id == "gemini-2.5-flash"

    def test_gemini_without_credentials_rejected(self):
        with pytest.raises(ValueError, match="api_key"):
            get_gateway(InferenceConfig(api_key=None))

    def test_vertex_requires_project(self):
        with pytest.raises(ValueError, match="project_id"):
            get_gateway(InferenceConfig(use_vertex_ai=True))

"""Gemini gateway backed by the google-genai SDK.

Sends the instruction as system_instruction, the user content as the first
part and every frame as an inline image part in capture order. When the
request carries a JSON shape, the shape hint is forwarded as
response_schema with response_mime_type="application/json"; the backend
biases its output toward it but the text is still treated as untrusted.
"""

import asyncio
import logging
import time

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from vizprompts.errors import BackendRefusalError, BackendUnavailableError
from vizprompts.schemas.analysis import AnalysisRequest
from vizprompts.services.inference.base import InferenceGateway

logger = logging.getLogger(__name__)


def _refusal_reason(response) -> str:
    """Best-effort description of why a response carried no text."""
    feedback = getattr(response, "prompt_feedback", None)
    if feedback is not None and getattr(feedback, "block_reason", None):
        return f"prompt blocked ({feedback.block_reason})"
    candidates = getattr(response, "candidates", None) or []
    if candidates and getattr(candidates[0], "finish_reason", None):
        return f"finish_reason={candidates[0].finish_reason}"
    return "empty response"


class GeminiGateway(InferenceGateway):
    """Inference gateway for Gemini models (AI Studio or Vertex AI)."""

    def __init__(
        self,
        client: genai.Client,
        model_id: str,
        *,
        temperature: float = 0.7,
        timeout_seconds: float = 120.0,
    ) -> None:
        """Initialize gateway with an explicitly constructed client.

        Args:
            client: google-genai client (see genai_client.build_genai_client).
            model_id: Gemini model identifier (e.g., "gemini-2.5-flash").
            temperature: Default sampling temperature when the request has none.
            timeout_seconds: Upper bound for one generate_content call.
        """
        self._client = client
        self.model_id = model_id
        self._temperature = temperature
        self._timeout = timeout_seconds

    def _build_config(self, request: AnalysisRequest) -> genai_types.GenerateContentConfig:
        temperature = request.temperature if request.temperature is not None else self._temperature
        if request.shape is not None and request.shape.kind == "json":
            return genai_types.GenerateContentConfig(
                system_instruction=request.instruction,
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=request.shape.hint,
            )
        return genai_types.GenerateContentConfig(
            system_instruction=request.instruction,
            temperature=temperature,
        )

    def _build_contents(self, request: AnalysisRequest) -> list:
        parts: list = [genai_types.Part.from_text(text=request.content)]
        for frame in request.frames:
            parts.append(genai_types.Part.from_bytes(data=frame.data, mime_type=frame.mime_type))
        return [genai_types.Content(role="user", parts=parts)]

    async def infer(self, request: AnalysisRequest) -> str:
        """Run one generate_content call and return the raw text."""
        config = self._build_config(request)
        contents = self._build_contents(request)
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model_id,
                    contents=contents,
                    config=config,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise BackendUnavailableError(
                f"Gemini request timed out after {self._timeout:.0f}s",
                details={"model": self.model_id},
            ) from e
        except genai_errors.APIError as e:
            raise BackendUnavailableError(
                f"Gemini API error {e.code}: {e.message}",
                details={"model": self.model_id, "status_code": e.code},
            ) from e
        except httpx.HTTPError as e:
            raise BackendUnavailableError(
                f"Gemini transport error: {type(e).__name__}: {e}",
                details={"model": self.model_id},
            ) from e

        elapsed = time.monotonic() - started
        text = response.text
        if not text or not text.strip():
            reason = _refusal_reason(response)
            logger.warning(f"Gemini {self.model_id} returned no text after {elapsed:.2f}s: {reason}")
            raise BackendRefusalError(
                f"The AI model did not return any text ({reason}).",
                details={"model": self.model_id},
            )

        logger.info(
            f"Gemini {self.model_id}: {len(request.frames)} image(s), "
            f"shape={request.shape.name if request.shape else None}, "
            f"{len(text)} chars in {elapsed:.2f}s"
        )
        return text

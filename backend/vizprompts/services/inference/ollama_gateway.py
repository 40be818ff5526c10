"""Ollama gateway for local or cloud vision models.

Connects via ollama.AsyncClient with optional auth headers and sends frames
as base64 images on the user message.

JSON shapes are requested with format="json" plus a short schema outline in
the system message; hosted Ollama ignores full schema dicts too often to rely
on them. Output is validated downstream either way.
"""

import asyncio
import base64
import json
import logging
import time
from typing import Optional

import httpx
from ollama import AsyncClient, ResponseError

from vizprompts.errors import BackendRefusalError, BackendUnavailableError
from vizprompts.schemas.analysis import AnalysisRequest, Shape
from vizprompts.services.inference.base import InferenceGateway

logger = logging.getLogger(__name__)


def _schema_instruction(shape: Shape) -> str:
    """Build a concise JSON schema instruction to append to the system prompt."""
    schema_json = json.dumps(shape.hint, indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with JSON only (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "All string fields must be non-empty strings (not arrays)."
    )


class OllamaGateway(InferenceGateway):
    """Inference gateway backed by a local or cloud Ollama instance.

    Strips the "ollama/" prefix from model IDs before passing to the ollama
    library. Always passes stream=False to avoid async generator responses.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
        *,
        temperature: float = 0.7,
        timeout_seconds: float = 120.0,
        client: Optional[AsyncClient] = None,
    ) -> None:
        """Initialize gateway for the given Ollama model.

        Args:
            model_id: Model identifier, optionally prefixed with "ollama/"
                      (e.g., "ollama/llava" or "llava").
            base_url: Base URL of the Ollama server.
            api_key: Optional API key for authentication (cloud deployments).
            temperature: Default sampling temperature when the request has none.
            timeout_seconds: Upper bound for one chat call.
            client: Pre-built client (tests inject fakes here).
        """
        self.model_id = model_id.removeprefix("ollama/")
        self._temperature = temperature
        self._timeout = timeout_seconds
        if client is None:
            headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
            client = AsyncClient(host=base_url, headers=headers)
        self._client = client

    def _build_messages(self, request: AnalysisRequest) -> list[dict]:
        system = request.instruction
        if request.shape is not None and request.shape.kind == "json":
            system += _schema_instruction(request.shape)

        user: dict = {"role": "user", "content": request.content}
        if request.frames:
            user["images"] = [base64.b64encode(frame.data).decode() for frame in request.frames]
        return [{"role": "system", "content": system}, user]

    async def infer(self, request: AnalysisRequest) -> str:
        """Run one chat call and return the raw message content."""
        temperature = request.temperature if request.temperature is not None else self._temperature
        wants_json = request.shape is not None and request.shape.kind == "json"
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self._client.chat(
                    model=self.model_id,
                    messages=self._build_messages(request),
                    format="json" if wants_json else None,
                    options={"temperature": temperature},
                    stream=False,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise BackendUnavailableError(
                f"Ollama request timed out after {self._timeout:.0f}s",
                details={"model": self.model_id},
            ) from e
        except ResponseError as e:
            raise BackendUnavailableError(
                f"Ollama error {e.status_code}: {e.error}",
                details={"model": self.model_id, "status_code": e.status_code},
            ) from e
        except (httpx.HTTPError, ConnectionError) as e:
            raise BackendUnavailableError(
                f"Ollama transport error: {type(e).__name__}: {e}",
                details={"model": self.model_id},
            ) from e

        elapsed = time.monotonic() - started
        text = response.message.content if response.message else None
        if not text or not text.strip():
            logger.warning(f"Ollama {self.model_id} returned no text after {elapsed:.2f}s")
            raise BackendRefusalError(
                "The AI model did not return any text.",
                details={"model": self.model_id},
            )

        logger.info(
            f"Ollama {self.model_id}: {len(request.frames)} image(s), "
            f"json={wants_json}, {len(text)} chars in {elapsed:.2f}s"
        )
        return text

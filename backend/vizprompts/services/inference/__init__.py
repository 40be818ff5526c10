"""Inference gateway abstraction layer.

Provides a single async "generate content" operation across providers
(Gemini via google-genai, Ollama).

Usage:
    from vizprompts.services.inference import get_gateway

    gateway = get_gateway(settings.inference)
    raw_text = await gateway.infer(request)
"""

from vizprompts.services.inference.base import InferenceGateway
from vizprompts.services.inference.registry import get_gateway

__all__ = ["InferenceGateway", "get_gateway"]

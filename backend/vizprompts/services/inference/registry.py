"""Provider registry for inference gateways.

Routes the configured provider to the correct gateway implementation.
The model ID prefix "ollama/" also routes to Ollama regardless of the
configured provider, matching how model IDs are written in config files.
"""

import logging

from vizprompts.config import InferenceConfig
from vizprompts.services.inference.base import InferenceGateway

logger = logging.getLogger(__name__)


def _is_ollama(config: InferenceConfig) -> bool:
    return config.provider == "ollama" or config.model.startswith("ollama/")


def get_gateway(config: InferenceConfig) -> InferenceGateway:
    """Return the gateway for the configured provider.

    Routing logic:
    - provider "ollama" or "ollama/*" model → OllamaGateway
    - anything else → GeminiGateway with a client built from config

    Args:
        config: Inference section of the application settings.

    Returns:
        Configured InferenceGateway ready for use.
    """
    if _is_ollama(config):
        from vizprompts.services.inference.ollama_gateway import OllamaGateway

        logger.debug(
            "Routing %s to OllamaGateway (base_url=%s, has_key=%s)",
            config.model,
            config.ollama_base_url,
            bool(config.ollama_api_key),
        )
        return OllamaGateway(
            model_id=config.model,
            base_url=config.ollama_base_url,
            api_key=config.ollama_api_key,
            temperature=config.temperature,
            timeout_seconds=config.timeout_seconds,
        )

    from vizprompts.services.genai_client import build_genai_client
    from vizprompts.services.inference.gemini_gateway import GeminiGateway

    logger.debug("Routing %s to GeminiGateway (vertex=%s)", config.model, config.use_vertex_ai)
    return GeminiGateway(
        client=build_genai_client(config),
        model_id=config.model,
        temperature=config.temperature,
        timeout_seconds=config.timeout_seconds,
    )

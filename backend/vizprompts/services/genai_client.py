"""google-genai client construction.

The client is built from an explicit InferenceConfig, once per process
(or per test), and handed to the Gemini gateway. Two modes:

- AI Studio: api_key set, use_vertex_ai false.
- Vertex AI: use_vertex_ai true, project_id required, credentials via
  Application Default Credentials.

Usage:
    from vizprompts.services.genai_client import build_genai_client

    client = build_genai_client(settings.inference)
"""

from dotenv import load_dotenv
from google import genai

from vizprompts.config import InferenceConfig

# Models that must use the global Vertex endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
}


def location_for_model(model_id: str, default_location: str) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return default_location


def build_genai_client(config: InferenceConfig) -> genai.Client:
    """Create a google-genai client for the configured backend.

    Args:
        config: Inference section of the application settings.

    Returns:
        genai.Client: Configured client instance.

    Raises:
        ValueError: If neither an API key nor a Vertex project is configured.
    """
    if config.use_vertex_ai:
        if not config.project_id:
            raise ValueError("inference.project_id is required when use_vertex_ai is enabled")
        # .env may carry GOOGLE_APPLICATION_CREDENTIALS for ADC
        load_dotenv()
        return genai.Client(
            vertexai=True,
            project=config.project_id,
            location=location_for_model(config.model, config.location),
        )

    if not config.api_key:
        raise ValueError(
            "inference.api_key is not set. Export VIZPROMPTS_INFERENCE__API_KEY "
            "or enable inference.use_vertex_ai."
        )
    return genai.Client(api_key=config.api_key)

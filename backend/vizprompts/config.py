"""VizPrompts settings: defaults, then config.yaml, then VIZPROMPTS_* environment variables."""

from pathlib import Path
from typing import ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

MIB = 1024 * 1024

DEFAULT_SCENE_FIELDS = (
    "description",
    "camera_details",
    "lighting",
    "color_palette",
    "textures_details",
    "atmosphere",
    "sound_design",
)

DEFAULT_MASTER_PROMPT = (
    "You are a visionary AGI director with an unparalleled eye for cinematic "
    "detail and creative potential. Your purpose is to analyze media and "
    "synthesize hyper-detailed, production-ready prompts for generative AI."
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading config.yaml from the working directory."""

    def get_field_value(self, field, field_name: str):
        return None, field_name, False

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class InferenceConfig(BaseModel):
    """Inference backend selection and credentials.

    provider picks the gateway implementation; model is passed through
    to the backend unchanged (e.g. "gemini-2.5-flash", "llava").
    """

    provider: Literal["gemini", "ollama"] = "gemini"
    model: str = "gemini-2.5-flash"
    temperature: float = 0.7
    timeout_seconds: float = 120.0

    # Gemini (AI Studio key or Vertex AI via ADC)
    api_key: str | None = None
    use_vertex_ai: bool = False
    project_id: str | None = None
    location: str = "us-central1"

    # Ollama
    ollama_base_url: str = "http://localhost:11434"
    ollama_api_key: str | None = None


class UploadConfig(BaseModel):
    """Upload boundary limits."""

    max_bytes: int = 200 * MIB
    # Empty means any video/* or image/* type
    allowed_mime_types: list[str] = Field(default_factory=list)


class PipelineConfig(BaseModel):
    """Sampling, retry, debounce and scene-shape parameters."""

    target_frame_count: int = 10
    frame_width: int = 640
    restructure_debounce_seconds: float = 1.0
    retry_max_attempts: int = 3
    retry_base_delay: int = 2
    scene_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_SCENE_FIELDS))
    default_master_prompt: str = DEFAULT_MASTER_PROMPT

    @field_validator("scene_fields")
    @classmethod
    def reject_reserved_scene_fields(cls, v: list[str]) -> list[str]:
        """scene_number is always present and cannot be configured."""
        if not v:
            raise ValueError("scene_fields must name at least one field")
        if "scene_number" in v:
            raise ValueError("scene_number is implicit and must not be listed in scene_fields")
        if len(set(v)) != len(v):
            raise ValueError("scene_fields contains duplicates")
        return v


class StorageConfig(BaseModel):
    """History database location."""

    database_url: str = "sqlite+aiosqlite:///vizprompts.db"


class ServerConfig(BaseModel):
    """HTTP server binding and CORS."""

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    # Sessions idle longer than this are dropped, oldest first past the cap
    session_idle_seconds: float = 1800.0
    max_sessions: int = 100


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: VIZPROMPTS_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="VIZPROMPTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit overrides, e.g. in tests)
        2. Environment variables
        3. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Built once at process start; components receive it explicitly.
settings = Settings()

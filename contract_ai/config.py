"""Application configuration."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Hard ceiling on retry passes, whatever the environment says
SECOND_TURN_PASS_LIMIT = 3


def find_env_file() -> Optional[Path]:
    """Find .env file in multiple possible locations."""
    current_dir = os.path.dirname(os.path.abspath(__file__))

    possible_paths = [
        os.path.join(os.getcwd(), ".env"),
        os.path.join(current_dir, ".env"),
        os.path.join(os.path.dirname(current_dir), ".env"),
    ]

    for path_str in possible_paths:
        if os.path.exists(path_str):
            path = Path(path_str)
            LOGGER.info(f"Found .env file at: {path}")
            return path

    LOGGER.debug("No .env file found in expected locations")
    return None


ENV_FILE = find_env_file()

_BASE_CONFIG = SettingsConfigDict(
    env_file=str(ENV_FILE) if ENV_FILE else None,
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
    env_prefix="",  # No prefix for nested settings
)


class VisionSettings(BaseSettings):
    """Vision model provider settings."""

    provider: Literal["xai", "openrouter", "gemini"] = Field(default="xai", validation_alias="VISION_PROVIDER")

    xai_api_key: str = Field(default="", validation_alias="XAI_API_KEY")
    xai_api_url: str = Field(default="https://api.x.ai/v1/chat/completions", validation_alias="XAI_API_URL")
    xai_model: str = Field(default="grok-4-fast-reasoning", validation_alias="XAI_MODEL")

    openrouter_api_key: str = Field(default="", validation_alias="OPENROUTER_API_KEY")
    openrouter_api_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_API_URL")
    openrouter_model: str = Field(default="google/gemini-2.5-flash", validation_alias="OPENROUTER_MODEL")

    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")

    timeout: int = Field(default=120, validation_alias="VISION_TIMEOUT")
    max_retries: int = Field(default=3, validation_alias="VISION_MAX_RETRIES")
    max_output_tokens: int = Field(default=16000, validation_alias="VISION_MAX_OUTPUT_TOKENS")
    enable_fallback: bool = Field(default=False, validation_alias="ENABLE_VISION_FALLBACK")

    model_config = _BASE_CONFIG


class PipelineSettings(BaseSettings):
    """Extraction pipeline tuning."""

    classifier_batch_size: int = Field(default=15, ge=1, validation_alias="CLASSIFIER_BATCH_SIZE")
    annotation_chunk_size: int = Field(default=8, ge=1, le=8, validation_alias="ANNOTATION_CHUNK_SIZE")
    max_second_turn_passes: int = Field(default=1, ge=0, validation_alias="MAX_SECOND_TURN_PASSES")
    extraction_backend: Literal["vision", "annotation"] = Field(default="vision", validation_alias="EXTRACTION_BACKEND")
    json_max_parse_attempts: int = Field(default=2, ge=1, validation_alias="JSON_MAX_PARSE_ATTEMPTS")

    model_config = _BASE_CONFIG

    @field_validator("max_second_turn_passes")
    @classmethod
    def cap_second_turn_passes(cls, value: int) -> int:
        if value > SECOND_TURN_PASS_LIMIT:
            LOGGER.warning(
                f"MAX_SECOND_TURN_PASSES={value} exceeds limit, using {SECOND_TURN_PASS_LIMIT}"
            )
            return SECOND_TURN_PASS_LIMIT
        return value


class MistralSettings(BaseSettings):
    """Mistral OCR / document annotation settings."""

    api_key: str = Field(default="", validation_alias="MISTRAL_API_KEY")
    api_url: str = Field(default="https://api.mistral.ai/v1/ocr", validation_alias="MISTRAL_API_URL")
    model: str = Field(default="mistral-ocr-latest", validation_alias="MISTRAL_MODEL")
    timeout: int = Field(default=180, validation_alias="MISTRAL_TIMEOUT")

    model_config = _BASE_CONFIG


class SupabaseSettings(BaseSettings):
    """Supabase storage settings for assembled annotation documents."""

    url: str = Field(default="", validation_alias="SUPABASE_URL")
    service_role_key: str = Field(default="", validation_alias="SUPABASE_SERVICE_ROLE_KEY")
    bucket: str = Field(default="contract-chunks", validation_alias="SUPABASE_STORAGE_BUCKET")
    signed_url_ttl: int = Field(default=3600, validation_alias="SUPABASE_SIGNED_URL_TTL")  # 1 hour

    model_config = _BASE_CONFIG

    @property
    def configured(self) -> bool:
        return bool(self.url and self.service_role_key)


class Settings(BaseSettings):
    """Unified application settings with nested models."""

    app_name: str = Field(default="contract-ai", validation_alias="APP_NAME")
    app_version: str = "0.1.0"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    vision: VisionSettings = Field(default_factory=lambda: VisionSettings())
    pipeline: PipelineSettings = Field(default_factory=lambda: PipelineSettings())
    mistral: MistralSettings = Field(default_factory=lambda: MistralSettings())
    supabase: SupabaseSettings = Field(default_factory=lambda: SupabaseSettings())

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def vision_provider(self) -> str:
        return self.vision.provider

    @property
    def classifier_batch_size(self) -> int:
        return self.pipeline.classifier_batch_size

    @property
    def annotation_chunk_size(self) -> int:
        return self.pipeline.annotation_chunk_size

    @property
    def max_second_turn_passes(self) -> int:
        return self.pipeline.max_second_turn_passes

    @property
    def extraction_backend(self) -> str:
        return self.pipeline.extraction_backend

    @property
    def json_max_parse_attempts(self) -> int:
        return self.pipeline.json_max_parse_attempts

    @property
    def mistral_api_key(self) -> str:
        return self.mistral.api_key

    @property
    def storage_configured(self) -> bool:
        return self.supabase.configured


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""
    settings = Settings()
    LOGGER.info(f"Settings initialized with environment: {settings.environment}")
    LOGGER.info(f"Vision provider: {settings.vision_provider}")
    LOGGER.info(f"Extraction backend: {settings.extraction_backend}")
    return settings

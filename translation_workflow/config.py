"""Engine configuration backed by environment variables."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Tunable policies and provider credentials."""

    model_config = SettingsConfigDict(env_prefix="TMS_", populate_by_name=True, extra="ignore")

    # Translation memory
    similarity_floor: int = Field(default=70, ge=0, le=100)

    # Confidence scoring
    default_confidence: int = Field(default=90, ge=0, le=100)
    human_edit_confidence: int = Field(default=80, ge=0, le=100)

    # Review policy
    require_dual_control: bool = False
    record_on_review: bool = True

    # Translation provider
    translation_provider: str = "openai"
    provider_retry_backoff: float = Field(default=1.0, ge=0)
    provider_max_retry_delay: float = Field(default=30.0, ge=0)
    openai_model: str = "gpt-3.5-turbo"
    anthropic_model: str = "claude-3-sonnet-20240229"
    google_model: str = "gemini-pro"
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, validation_alias="OPENAI_BASE_URL")
    anthropic_api_key: Optional[str] = Field(default=None, validation_alias="ANTHROPIC_API_KEY")
    google_api_key: Optional[str] = Field(default=None, validation_alias="GOOGLE_API_KEY")

    # Persistence
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("TMS_DATABASE_URL", "DATABASE_URL"),
    )

    # Runtime
    log_level: str = "INFO"
    seed_demo_data: bool = False


@lru_cache()
def get_settings() -> EngineSettings:
    """Return the process-wide settings instance."""
    return EngineSettings()

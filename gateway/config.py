"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateway.models import (
    ClaudeConfig,
    HuggingFaceConfig,
    OpenAIConfig,
    ProviderConfig,
    ProviderType,
    TimeoutConfig,
)


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    claude_api_key: str = Field(default="", alias="CLAUDE_API_KEY")
    claude_model: str = Field(default="claude-haiku-4-5-20251001", alias="CLAUDE_MODEL")
    claude_api_url: str = Field(default="https://api.anthropic.com/v1/messages", alias="CLAUDE_API_URL")
    claude_api_version: str = Field(default="2023-06-01", alias="CLAUDE_API_VERSION")

    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_organization: str | None = Field(default=None, alias="OPENAI_ORGANIZATION")
    openai_project_id: str | None = Field(default=None, alias="OPENAI_PROJECT_ID")
    openai_model: str = Field(default="gpt-5", alias="OPENAI_MODEL")

    huggingface_api_key: str = Field(default="", alias="HUGGINGFACE_API_KEY")
    huggingface_model: str = Field(default="deepseek-ai/DeepSeek-R1:fastest", alias="HUGGINGFACE_MODEL")

    connect_timeout_ms: int = Field(default=10_000, alias="CONNECT_TIMEOUT_MS")
    read_timeout_ms: int = Field(default=300_000, alias="READ_TIMEOUT_MS")
    write_timeout_ms: int = Field(default=300_000, alias="WRITE_TIMEOUT_MS")

    database_path: Path = Field(default=Path("gateway.db"), alias="DATABASE_PATH")
    scheduler_min_interval_seconds: int = Field(default=10, alias="SCHEDULER_MIN_INTERVAL_SECONDS")
    tokenizer_model: str = Field(default="gpt-4", alias="TOKENIZER_MODEL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def provider_configs(settings: Settings) -> dict[ProviderType, ProviderConfig]:
    """Build one provider config per provider that has an API key."""

    timeout = TimeoutConfig(
        connect_timeout_ms=settings.connect_timeout_ms,
        read_timeout_ms=settings.read_timeout_ms,
        write_timeout_ms=settings.write_timeout_ms,
    )
    configs: dict[ProviderType, ProviderConfig] = {}
    if settings.claude_api_key:
        configs[ProviderType.CLAUDE] = ClaudeConfig(
            api_key=settings.claude_api_key,
            base_url=settings.claude_api_url,
            api_version=settings.claude_api_version,
            timeout=timeout,
            default_model=settings.claude_model,
        )
    if settings.openai_api_key:
        configs[ProviderType.OPENAI] = OpenAIConfig(
            api_key=settings.openai_api_key,
            organization=settings.openai_organization,
            project_id=settings.openai_project_id,
            timeout=timeout,
            default_model=settings.openai_model,
        )
    if settings.huggingface_api_key:
        configs[ProviderType.HUGGINGFACE] = HuggingFaceConfig(
            api_key=settings.huggingface_api_key,
            timeout=timeout,
            default_model=settings.huggingface_model,
        )
    return configs

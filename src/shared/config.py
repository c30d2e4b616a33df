"""Configuration management for the chat service.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseModel):
    """Connection settings for one model vendor."""
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    api_version: Optional[str] = None
    deployment_name: Optional[str] = None


def _default_providers() -> dict[str, ProviderSettings]:
    # OpenAI-compatible endpoints per vendor; keys come from the environment
    return {
        "openai": ProviderSettings(api_key=os.environ.get("OPENAI_API_KEY")),
        "anthropic": ProviderSettings(
            api_key=os.environ.get("ANTHROPIC_API_KEY"),
            api_base="https://api.anthropic.com/v1/",
        ),
        "google": ProviderSettings(
            api_key=os.environ.get("GOOGLE_API_KEY"),
            api_base="https://generativelanguage.googleapis.com/v1beta/openai/",
        ),
        "xai": ProviderSettings(
            api_key=os.environ.get("XAI_API_KEY"),
            api_base="https://api.x.ai/v1",
        ),
        "together": ProviderSettings(
            api_key=os.environ.get("TOGETHER_API_KEY"),
            api_base="https://api.together.xyz/v1",
        ),
    }


class LLMSettings(BaseSettings):
    """Language-model configuration."""
    backend: str = Field(default="openai", description="Client backend: openai, azure_openai, mock")
    default_model: str = Field(default="gpt-4o")
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=4096, gt=0)
    max_duration_seconds: float = Field(default=60, gt=0)
    max_steps: int = Field(default=1, ge=1, le=10)
    providers: dict[str, ProviderSettings] = Field(default_factory=_default_providers)

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore"
    )


class DatabaseSettings(BaseSettings):
    """Database configuration."""
    url: str = Field(default="sqlite:///./chat.db")
    echo: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore"
    )


class AuthSettings(BaseSettings):
    """Bearer token configuration."""
    secret_key: str = Field(default="change-me-in-production")
    token_expire_minutes: int = Field(default=60)

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file. Environment variables take precedence over it."""
        return _layered(cls, load_yaml_config(path))


def _layered(settings_cls: type[BaseSettings], values: dict[str, Any]) -> Any:
    """
    Build ``settings_cls`` with file ``values`` underneath the environment.

    Only fields actually found in the environment (or .env) land in
    ``model_fields_set``, so those are the ones that override the file.
    Nested settings sections are layered the same way with their own prefix.
    """
    from_env = settings_cls()
    merged = dict(values)
    merged.update(from_env.model_dump(include=from_env.model_fields_set))

    for name, field in settings_cls.model_fields.items():
        section = field.annotation
        if name in values and isinstance(section, type) and issubclass(section, BaseSettings):
            merged[name] = _layered(section, values[name] or {})

    return settings_cls(**merged)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("CHAT_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)

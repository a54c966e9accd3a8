"""
Configuration management for Majordomo

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BackendKind = Literal["anthropic", "openai", "ollama", "claude-code"]
AuthMode = Literal["api_key", "oauth", "cli"]

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "ollama": "llama3.2",
    "claude-code": "default",
}

DEFAULT_SYSTEM_PROMPT = """You are Majordomo, a personal AI assistant.

Your job is to help manage your human's digital life:
- Triage and summarize incoming messages
- Draft responses when appropriate
- Manage calendar and schedule
- Connect information across different services

Guidelines:
- Be concise and actionable
- Ask for confirmation before taking consequential actions
- Protect your human's time and attention"""


class BackendConfig(BaseSettings):
    """Configuration for a single completion backend."""

    model_config = SettingsConfigDict(env_prefix="MAJORDOMO_BACKEND_", extra="ignore")

    backend_kind: BackendKind = "anthropic"
    auth_mode: AuthMode = "api_key"
    credential: str | None = None
    model: str | None = None
    endpoint: str | None = None
    max_tokens: int = 8192


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Majordomo"
    debug: bool = False
    log_level: str = "INFO"

    # Completion backends
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    anthropic_model: str = Field(default="", description="Override for the Anthropic model")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(default="", description="Override for the OpenAI model")
    openai_base_url: str = Field(default="", description="OpenAI-compatible endpoint")
    ollama_base_url: str = Field(default="http://localhost:11434", description="Local Ollama daemon")
    ollama_model: str = Field(default="", description="Override for the Ollama model")
    claude_cli_path: str = Field(default="claude", description="Path to the claude CLI")
    default_backend: BackendKind | None = Field(
        default=None,
        description="Skip environment probing and always use this backend",
    )

    # Agent loop
    max_turns: int = Field(default=10, description="Maximum backend turns per run")
    max_tokens: int = Field(default=8192, description="Max tokens per completion")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="System prompt text")

    # Sessions
    sessions_dir: Path = Field(
        default=Path.home() / ".majordomo" / "sessions",
        description="Directory holding JSONL session transcripts",
    )
    auto_compact: bool = Field(default=False, description="Compact long sessions before a run")
    compaction_threshold: int = Field(default=20, description="Messages before compaction applies")
    compaction_keep_recent: int = Field(default=10, description="Messages kept verbatim on compaction")

    @field_validator("default_backend", mode="before")
    @classmethod
    def parse_default_backend(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("max_turns")
    @classmethod
    def validate_max_turns(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_turns must be at least 1")
        return v

    def get_backend_config(self, backend_kind: str | None = None) -> BackendConfig:
        """Get backend configuration for a backend kind."""
        backend_kind = backend_kind or self.default_backend or "anthropic"

        credential_map = {
            "anthropic": self.anthropic_api_key or None,
            "openai": self.openai_api_key or None,
            "ollama": None,
            "claude-code": None,
        }

        model_map = {
            "anthropic": self.anthropic_model,
            "openai": self.openai_model,
            "ollama": self.ollama_model,
            "claude-code": "",
        }

        endpoint_map = {
            "anthropic": None,
            "openai": self.openai_base_url or None,
            "ollama": self.ollama_base_url,
            "claude-code": self.claude_cli_path,
        }

        auth_map = {
            "anthropic": "api_key",
            "openai": "api_key",
            "ollama": "cli",
            "claude-code": "cli",
        }

        return BackendConfig(
            backend_kind=backend_kind,  # type: ignore
            auth_mode=auth_map.get(backend_kind, "api_key"),  # type: ignore
            credential=credential_map.get(backend_kind),
            model=model_map.get(backend_kind) or DEFAULT_MODELS.get(backend_kind),
            endpoint=endpoint_map.get(backend_kind),
            max_tokens=self.max_tokens,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

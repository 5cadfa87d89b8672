"""Configuration management for the chat orchestration service.

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
    """Configuration of one concrete LLM backend."""
    backend: str = Field(default="openai", description="Backend: openai, anthropic, google, mock")
    model: str = Field(default="gpt-3.5-turbo", description="Model name")
    api_key: Optional[str] = Field(default=None, description="API key")
    api_base: Optional[str] = Field(default=None, description="API base URL")
    temperature: float = Field(default=0.0, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    streaming: bool = Field(default=True, description="Aggregate a streamed completion")


class ProvidersSettings(BaseSettings):
    """Backends behind each selectable provider tag, plus the critic."""
    primary: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(backend="openai", model="gpt-3.5-turbo")
    )
    secondary: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            backend="anthropic", model="claude-3-5-sonnet-20241022"
        )
    )
    tertiary: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(backend="google", model="gemini-1.5-pro")
    )
    critic: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            backend="openai", model="gpt-4o-mini", temperature=0.0, streaming=False
        )
    )

    model_config = SettingsConfigDict(
        env_prefix="PROVIDERS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore"
    )


class ServerSettings(BaseSettings):
    """HTTP / WebSocket server configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )
    outbox_limit: int = Field(default=1000, gt=0, description="Queued events per client before it is dropped")
    turn_log_limit: int = Field(default=1000, gt=0, description="Turns kept per room")

    model_config = SettingsConfigDict(
        env_prefix="SERVER_",
        env_file=".env",
        extra="ignore"
    )


class ToolGatewaySettings(BaseSettings):
    """Identity the tool gateway presents to external tool servers."""
    client_name: str = Field(default="chat-orchestrator-tool-gateway")
    client_version: str = Field(default="1.0.0")

    model_config = SettingsConfigDict(
        env_prefix="TOOL_GATEWAY_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Component settings
    providers: ProvidersSettings = Field(default_factory=ProvidersSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    tool_gateway: ToolGatewaySettings = Field(default_factory=ToolGatewaySettings)

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        return cls(**load_yaml_config(path))


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

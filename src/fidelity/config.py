"""Fidelity configuration, loaded from fidelity.yaml and the environment."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load fidelity.yaml from FIDELITY_CONFIG_PATH or the working directory."""
    config_path = os.getenv("FIDELITY_CONFIG_PATH")
    search_paths = [Path(config_path)] if config_path else [Path("fidelity.yaml")]
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


class DiscordConfig(BaseSettings):
    """Discord bot bridge configuration."""

    bot_token: str = Field(default="", description="Discord bot token")
    channel_id: str = Field(default="", description="Channel receiving approval messages")
    public_url: str = Field(default="", description="Base URL used to absolutize image paths")
    relay_secret: str = Field(default="", description="Shared secret for the interaction relay. Empty = open")

    max_reconnect_attempts: int = Field(default=5, ge=1, le=50)
    reconnect_delay_s: float = Field(default=5.0, ge=0.0, le=300.0)
    ready_timeout_s: float = Field(default=10.0, gt=0.0, le=120.0)
    ready_poll_interval_s: float = Field(default=1.0, gt=0.0, le=10.0)

    receipt_points: int = Field(default=10, gt=0, description="Points granted for a single-product receipt")
    custom_point_options: Annotated[list[int], NoDecode] = Field(
        default_factory=lambda: [5, 10, 15, 20, 25, 30, 50, 100],
    )
    post_image_preview: bool = True

    @field_validator("channel_id", mode="before")
    @classmethod
    def _parse_channel_id(cls, value: Any) -> str:
        text = str(value or "").strip()
        if text and not text.isdigit():
            raise ValueError("channel_id must be a numeric Discord snowflake")
        return text

    @field_validator("custom_point_options", mode="before")
    @classmethod
    def _parse_point_options(cls, value: Any) -> list[int]:
        if value is None:
            return []
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return []
            if text.startswith("["):
                parsed = json.loads(text)
                return [int(item) for item in parsed]
            return [int(item.strip()) for item in text.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [int(item) for item in value]
        return [int(value)]

    @field_validator("custom_point_options")
    @classmethod
    def _check_point_options(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("custom_point_options must not be empty")
        if any(points <= 0 for points in value):
            raise ValueError("custom_point_options must be positive")
        if len(value) > 20:
            raise ValueError("custom_point_options allows at most 20 values")
        return value

    @property
    def configured(self) -> bool:
        return bool(self.bot_token.strip() and self.channel_id.strip())

    model_config = SettingsConfigDict(env_prefix="FIDELITY_DISCORD_")


class FidelityConfig(BaseSettings):
    """Root Fidelity configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")

    # Auth
    api_key: str = Field(default="", description="API key for shop endpoints. Empty = no auth")

    # Storage
    data_dir: str = Field(default="data")
    db_journal_mode: Literal["WAL", "DELETE"] = Field(default="WAL")
    db_busy_timeout_ms: int = Field(default=5000, ge=100, le=120000)

    # Sub-configs
    discord: DiscordConfig = Field(default_factory=DiscordConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="FIDELITY_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> FidelityConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        discord_data = yaml_cfg.pop("discord", {})

        # Only pass the YAML sub-config if it has data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if discord_data:
            kwargs["discord"] = DiscordConfig(**discord_data)

        return cls(**kwargs)


# Singleton
_config: FidelityConfig | None = None


def get_config() -> FidelityConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = FidelityConfig.load()
    return _config

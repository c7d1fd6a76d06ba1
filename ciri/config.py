"""
Configuration Module

Loads configuration from YAML file with environment variable override.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelegramConfig(BaseModel):
    """Telegram bot credentials."""
    api_id: int = Field(..., description="Telegram API ID from my.telegram.org")
    api_hash: str = Field(..., description="Telegram API hash")
    bot_token: SecretStr = Field(..., description="Bot token from @BotFather")
    session_name: str = Field(default="ciri_bot", description="Session file name")


class CacheConfig(BaseModel):
    """Dedup cache and persistence settings."""
    path: str = Field(
        default="data/cache.json",
        description="JSON file the posted-items cache is persisted to",
    )
    capacity: int = Field(
        default=128, ge=1, le=100_000,
        description="Items remembered per chat before the oldest is dropped",
    )
    save_debounce_seconds: float = Field(
        default=2.0, ge=0.0, le=600.0,
        description="Delay before saving so bursts of posts share one write",
    )
    shutdown_timeout_seconds: float = Field(
        default=5.0, gt=0.0, le=120.0,
        description="Upper bound for the final save on exit",
    )


class GalleryConfig(BaseModel):
    """pr0gramm API settings."""
    api_url: str = Field(default="https://pr0gramm.com/api/items/get")
    image_host: str = Field(default="https://img.pr0gramm.com")
    video_host: str = Field(default="https://vid.pr0gramm.com")
    flags: int = Field(default=9, description="Content flags bitmask (9 = sfw + nsfp)")
    promoted: bool = Field(default=True, description="Only search the top/promoted feed")
    timeout_seconds: float = Field(default=15.0, gt=0.0, le=120.0)
    check_alive: bool = Field(
        default=True,
        description="HEAD-check the chosen item before posting it",
    )
    max_alive_attempts: int = Field(default=3, ge=1, le=20)


def _default_aliases() -> dict[str, list[str]]:
    return {
        "kadse": ["kadse", "süßvieh"],
        "waschkadse": ["müllpanda", "awww"],
        "otten": ["otten", "awww"],
        "ente": ["ente", "gut", "alles", "gut"],
    }


class CommandsConfig(BaseModel):
    """Chat command settings."""
    prefix: str = Field(default=".", min_length=1, max_length=3)
    aliases: dict[str, list[str]] = Field(
        default_factory=_default_aliases,
        description="Shortcut command name -> fixed tag list",
    )

    @field_validator("aliases")
    @classmethod
    def check_aliases(cls, aliases: dict[str, list[str]]) -> dict[str, list[str]]:
        """Every alias needs a name and at least one tag."""
        normalized: dict[str, list[str]] = {}
        for name, tags in aliases.items():
            key = name.strip().lower()
            if not key:
                raise ValueError("Alias name cannot be empty")
            tags = [t.strip() for t in tags if t.strip()]
            if not tags:
                raise ValueError(f"Alias '{name}' must have at least one tag")
            if key in normalized:
                raise ValueError(f"Alias '{name}' is defined twice")
            normalized[key] = tags
        return normalized


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    file: Optional[str] = Field(default="logs/ciri.log")


class AppConfig(BaseSettings):
    """
    Main application configuration.

    Usage:
        config = AppConfig.from_yaml("config/config.yaml")
    """
    model_config = SettingsConfigDict(
        env_prefix="CIRI_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    telegram: TelegramConfig
    cache: CacheConfig = Field(default_factory=CacheConfig)
    gallery: GalleryConfig = Field(default_factory=GalleryConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @model_validator(mode="after")
    def check_placeholders(self) -> "AppConfig":
        """Check if credentials are still using placeholder values."""
        placeholders = {
            "your_api_hash_here",
            "your_bot_token_here",
        }
        if self.telegram.api_id == 12345678:
            raise ValueError("Telegram api_id is still using the placeholder: 12345678")
        if self.telegram.api_hash in placeholders:
            raise ValueError(
                f"Telegram api_hash is still using the placeholder: {self.telegram.api_hash}"
            )
        if self.telegram.bot_token.get_secret_value() in placeholders:
            raise ValueError("Telegram bot_token is still using the placeholder value")
        return self


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """
    Load configuration from file or environment.

    Tries: explicit path → config/config.yaml → config.yaml → env vars.
    """
    if path:
        return AppConfig.from_yaml(path)

    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
    ]
    for p in default_paths:
        if p.exists():
            return AppConfig.from_yaml(p)

    # Fall back to environment
    return AppConfig(
        telegram=TelegramConfig(
            api_id=int(os.environ["CIRI_TELEGRAM__API_ID"]),
            api_hash=os.environ["CIRI_TELEGRAM__API_HASH"],
            bot_token=os.environ["CIRI_TELEGRAM__BOT_TOKEN"],
        ),
    )

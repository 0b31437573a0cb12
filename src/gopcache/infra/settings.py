"""
Application settings for gopcache.

This module defines process-level configuration using Pydantic BaseSettings.
The runtime never reads these implicitly; entry points convert them into a
DecoderConfig and pass it to constructors.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_range_cache_url() -> str:
    cache_dir = Path(os.getenv("XDG_CACHE_HOME", Path.home() / ".cache")) / "gopcache"
    return f"sqlite:///{cache_dir / 'ranges.db'}"


class Settings(BaseSettings):
    """Main application settings using Pydantic BaseSettings."""

    # Decode window (milliseconds)
    decode_next_duration: float = Field(default=0.0, alias="GOPCACHE_DECODE_NEXT_DURATION")
    release_prev_duration: float = Field(default=0.0, alias="GOPCACHE_RELEASE_PREV_DURATION")
    gop_min_duration: float = Field(default=0.0, alias="GOPCACHE_GOP_MIN_DURATION")
    decode_debounce: float = Field(default=100.0, alias="GOPCACHE_DECODE_DEBOUNCE")
    audio_segment_duration: float = Field(default=5000.0, alias="GOPCACHE_AUDIO_SEGMENT_DURATION")
    decode_workers: int = Field(default=2, alias="GOPCACHE_DECODE_WORKERS")

    # Loading
    preload_all: bool = Field(default=False, alias="GOPCACHE_PRELOAD_ALL")
    mute: bool = Field(default=False, alias="GOPCACHE_MUTE")

    # Persistent range cache
    range_cache: bool = Field(default=False, alias="GOPCACHE_RANGE_CACHE")
    range_cache_url: str = Field(
        default_factory=_default_range_cache_url, alias="GOPCACHE_RANGE_CACHE_URL"
    )
    range_chunk_size: int = Field(default=4 * 1024 * 1024, alias="GOPCACHE_RANGE_CHUNK_SIZE")
    http_timeout: float = Field(default=30.0, alias="GOPCACHE_HTTP_TIMEOUT")

    log_level: str = Field(default="INFO", alias="GOPCACHE_LOG_LEVEL")
    log_json: bool = Field(default=False, alias="GOPCACHE_LOG_JSON")

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


def _resolve_env_file() -> str | None:
    # 1) Explicit override
    explicit = os.getenv("GOPCACHE_ENV_FILE")
    if explicit and Path(explicit).is_file():
        return explicit

    # 2) CWD .env
    cwd_env = Path.cwd() / ".env"
    if cwd_env.is_file():
        return str(cwd_env)
    return None


def load_settings() -> Settings:
    """Build settings from the environment and the best-effort .env file."""
    env_file = _resolve_env_file()
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()

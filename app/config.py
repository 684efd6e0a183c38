"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import normalize_base_url

API_PATH = "/api/v1"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Marquee", alias="APP_NAME")
    server_host: str = Field(default="127.0.0.1", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    overseerr_url: HttpUrl | None = Field(
        default=None,
        alias="OVERSEERR_URL",
        validation_alias=AliasChoices("OVERSEERR_URL", "CATALOG_URL"),
    )
    session_cookie_name: str = Field(
        default="connect.sid", alias="SESSION_COOKIE_NAME"
    )
    watch_region: str = Field(default="US", alias="WATCH_REGION")

    probe_throttle_seconds: float = Field(
        default=30.0, alias="PROBE_THROTTLE", ge=0, le=3_600
    )
    search_debounce_seconds: float = Field(
        default=0.3, alias="SEARCH_DEBOUNCE", ge=0, le=5
    )
    filter_persist_delay_seconds: float = Field(
        default=0.5, alias="FILTER_PERSIST_DELAY", ge=0, le=60
    )
    prefetch_threshold: int = Field(
        default=5, alias="PREFETCH_THRESHOLD", ge=1, le=100
    )

    request_timeout_seconds: float = Field(
        default=20.0, alias="REQUEST_TIMEOUT", gt=0, le=300
    )
    request_retry_limit: int = Field(
        default=2, alias="REQUEST_RETRY_LIMIT", ge=0, le=10
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./marquee.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("watch_region", mode="before")
    @classmethod
    def _normalise_region(cls, value: object) -> str:
        """Accept two-letter region codes in any case."""

        if value is None:
            return "US"
        region = str(value).strip().upper()
        if not region:
            return "US"
        if len(region) != 2 or not region.isalpha():
            raise ValueError("WATCH_REGION must be a two-letter country code")
        return region

    @field_validator("session_cookie_name", mode="before")
    @classmethod
    def _strip_cookie_name(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValueError("SESSION_COOKIE_NAME may not be blank")
            return stripped
        return value

    @property
    def overseerr_api_url(self) -> str | None:
        """Return the server's API root, e.g. ``https://host:5055/api/v1``."""

        base = normalize_base_url(str(self.overseerr_url) if self.overseerr_url else None)
        if base is None:
            return None
        if base.lower().endswith(API_PATH):
            return base
        return f"{base}{API_PATH}"

    @property
    def service_key(self) -> str:
        """Identity used to key persisted filter state for the active server."""

        if self.overseerr_url is None:
            return "default"
        parsed = urlparse(str(self.overseerr_url))
        host = (parsed.hostname or "").lower()
        if parsed.port:
            return f"{host}:{parsed.port}"
        return host or "default"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

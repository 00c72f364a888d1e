"""Application configuration models."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AniFeed", alias="APP_NAME")
    app_version: str = Field(default="1.0", alias="APP_VERSION")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    catalog_api_url: HttpUrl = Field(
        default="https://api.jikan.moe/v4", alias="CATALOG_API_URL"
    )
    catalog_page_size: int = Field(
        default=25, alias="CATALOG_PAGE_SIZE", ge=1, le=25
    )
    catalog_rate_limit_interval: float = Field(
        default=0.5, alias="CATALOG_RATE_LIMIT_INTERVAL", ge=0
    )

    title_lookup_api_url: HttpUrl = Field(
        default="https://api.imdbapi.dev", alias="TITLE_LOOKUP_API_URL"
    )
    title_lookup_limit: int = Field(
        default=5, alias="TITLE_LOOKUP_LIMIT", ge=1, le=50
    )
    launch_scheme: str = Field(default="stremio", alias="LAUNCH_SCHEME")

    http_timeout_seconds: float = Field(
        default=20.0, alias="HTTP_TIMEOUT", gt=0
    )

    database_url: str = Field(
        default="sqlite:///./anifeed.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("launch_scheme", mode="before")
    @classmethod
    def _normalise_launch_scheme(cls, value: object) -> str:
        """Accept ``stremio``, ``stremio:`` or ``stremio://`` alike."""

        if value is None:
            return "stremio"
        scheme = str(value).strip()
        scheme = scheme.split(":", 1)[0].strip()
        if not scheme:
            return "stremio"
        if not SCHEME_RE.match(scheme):
            raise ValueError("LAUNCH_SCHEME must be a valid URL scheme")
        return scheme.lower()

    @property
    def user_agent(self) -> str:
        """Return the User-Agent header sent to remote services."""

        return f"{self.app_name}/{self.app_version}"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

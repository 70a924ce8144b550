"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_TOKEN_TTL_SECONDS = 5 * 24 * 60 * 60


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AnimeShelf", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8800, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./animeshelf.db", alias="DATABASE_URL"
    )

    secret_key: str = Field(default="change-me", alias="SECRET_KEY")
    token_ttl_seconds: int = Field(
        default=DEFAULT_TOKEN_TTL_SECONDS, alias="TOKEN_TTL_SECONDS", ge=60
    )

    jikan_api_url: HttpUrl = Field(
        default="https://api.jikan.moe/v4", alias="JIKAN_API_URL"
    )
    jikan_search_limit: int = Field(
        default=5, alias="JIKAN_SEARCH_LIMIT", ge=1, le=25
    )

    max_profiles_per_user: int = Field(
        default=5, alias="MAX_PROFILES_PER_USER", ge=1, le=20
    )
    avatar_base_url: str = Field(
        default="https://api.dicebear.com/7.x/avataaars/svg",
        alias="AVATAR_BASE_URL",
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("secret_key")
    @classmethod
    def _require_secret(cls, value: str) -> str:
        """Reject blank signing secrets."""

        cleaned = value.strip()
        if not cleaned:
            raise ValueError("SECRET_KEY must not be blank")
        return cleaned

    @field_validator("avatar_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

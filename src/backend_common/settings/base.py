"""Base settings shared by aiohttp services."""
from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseServiceSettings(BaseSettings):
    """Settings every service needs: environment, bind address, pool and CORS."""

    model_config = SettingsConfigDict(
        env_file=(".env", "env.example"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = "development"
    app_name: str = "service"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    db_pool_size: int = 20

    # Plain string so pydantic-settings does not try to JSON-decode the env value
    cors_allowed_origins_str: str = Field(
        default="http://localhost:3000,http://localhost:8080",
        alias="CORS_ALLOWED_ORIGINS",
    )

    # Populated by the validator below, never read from the environment
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        validation_alias="__cors_allowed_origins_internal__",
    )

    @model_validator(mode="after")
    def parse_cors_origins(self) -> "BaseServiceSettings":
        """Split the comma-separated CORS origins string."""
        value = self.cors_allowed_origins_str
        if value:
            self.cors_allowed_origins = [
                origin.strip() for origin in value.split(",") if origin.strip()
            ]
        return self

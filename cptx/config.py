"""
Configuration settings for the cptx data layer.

Uses Pydantic Settings to load environment variables for the primary and
replica connection strings, pool bounds, placeholder style and logging.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cptx.rewriter import BindStyle


class Settings(BaseSettings):
    # Database
    primary_dsn: str = Field("", alias="PRIMARY_DSN")
    replica_dsn: str = Field("", alias="REPLICA_DSN")
    domain: str = Field("default", alias="DB_DOMAIN")

    # Pool
    pool_min_size: int = Field(1, alias="POOL_MIN_SIZE", ge=0)
    pool_max_size: int = Field(10, alias="POOL_MAX_SIZE", ge=1)
    connect_timeout_seconds: float = Field(10.0, alias="CONNECT_TIMEOUT_SECONDS", gt=0)

    # Query rewriting
    bind_style: BindStyle = Field(BindStyle.FORMAT, alias="BIND_STYLE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]

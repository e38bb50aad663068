"""
Configuration and settings for the catalog service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Record store (the platform's Postgres database)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    books_table: str = Field(default="books", env="BOOKS_TABLE")

    # S3-compatible object storage
    storage_endpoint: Optional[str] = Field(default=None, env="STORAGE_ENDPOINT")
    storage_region: Optional[str] = Field(default=None, env="STORAGE_REGION")
    storage_bucket: str = Field(default="supabase-bucket", env="STORAGE_BUCKET")
    storage_folder: str = Field(default="public", env="STORAGE_FOLDER")
    storage_public_url: Optional[str] = Field(
        default=None, env="STORAGE_PUBLIC_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Change feed (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    change_topic_prefix: str = Field(default="table:", env="CHANGE_TOPIC_PREFIX")

    # Remote functions
    functions_url: Optional[str] = Field(default=None, env="FUNCTIONS_URL")
    api_key: Optional[str] = Field(default=None, env="API_KEY")
    edge_function_name: str = Field(default="hello-world", env="EDGE_FUNCTION_NAME")
    edge_function_caller: str = Field(default="Python", env="EDGE_FUNCTION_CALLER")
    function_timeout_seconds: float = Field(
        default=30.0, env="FUNCTION_TIMEOUT_SECONDS"
    )

    # Controller view-state timers
    error_message_ttl_seconds: float = Field(
        default=3.0, env="ERROR_MESSAGE_TTL_SECONDS"
    )
    copied_flag_ttl_seconds: float = Field(
        default=2.0, env="COPIED_FLAG_TTL_SECONDS"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()

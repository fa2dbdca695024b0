"""
Configuration settings for evented-db.

Uses Pydantic Settings to load environment variables for the database
connection, logging, and batch execution defaults.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("evented", alias="DB_NAME")
    db_connect_attempts: int = Field(1, alias="DB_CONNECT_ATTEMPTS", ge=1)

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Batch execution
    batch_timeout_seconds: Optional[float] = Field(None, alias="BATCH_TIMEOUT_SECONDS", gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def dsn(self) -> str:
        """
        Connection string for the configured database.

        DATABASE_URL wins when set; otherwise a PostgreSQL DSN is composed from
        the individual DB_* fields (credentials are passed separately).
        """
        if self.database_url:
            return self.database_url
        return f"postgresql://{self.db_host}:{self.db_port}/{self.db_name}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]

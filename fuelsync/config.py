"""
Configuration settings for FuelSync.

Uses Pydantic Settings to load environment variables for database connections,
logging, sale derivation policies, and the external OCR (vision) service.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("fuelsync", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")
    db_statement_timeout_ms: int = Field(5_000, alias="DB_STATEMENT_TIMEOUT_MS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    datastore_backend: Literal["postgres", "memory"] = Field(
        "postgres", alias="DATASTORE_BACKEND"
    )

    # Sale derivation policies
    price_scope_policy: Literal["station_first", "latest_any"] = Field(
        "station_first", alias="PRICE_SCOPE_POLICY"
    )
    negative_delta_policy: Literal["flag", "reject"] = Field(
        "flag", alias="NEGATIVE_DELTA_POLICY"
    )

    # OCR / vision service
    ocr_endpoint: str = Field("http://localhost:8080/ocr/analyze", alias="OCR_ENDPOINT")
    ocr_api_key: str = Field("", alias="OCR_API_KEY")
    ocr_poll_attempts: int = Field(10, alias="OCR_POLL_ATTEMPTS")
    ocr_poll_interval_seconds: float = Field(1.0, alias="OCR_POLL_INTERVAL_SECONDS")
    ocr_request_timeout_seconds: float = Field(30.0, alias="OCR_REQUEST_TIMEOUT_SECONDS")
    ocr_max_upload_bytes: int = Field(10 * 1024 * 1024, alias="OCR_MAX_UPLOAD_BYTES")
    ocr_allowed_content_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/jpg", "image/png", "application/pdf"],
        alias="OCR_ALLOWED_CONTENT_TYPES",
    )

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

# artifact_gatherer/config.py
from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Service Metadata
    SERVICE_NAME: str = "artifact-gatherer"
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    # Instrumented browser (remote debugging endpoint)
    DEBUGGER_URL: str = "http://127.0.0.1:9222"

    # Protocol timeouts (milliseconds)
    PROTOCOL_TIMEOUT_MS: int = 30_000
    SOURCE_MAP_FETCH_TIMEOUT_MS: int = 1_500
    RESPONSE_BODY_TIMEOUT_MS: int = 1_000
    PAGE_LOAD_TIMEOUT_MS: int = 45_000

    # Max in-flight fetches per extractor (response bodies, source maps)
    FETCH_CONCURRENCY: int = 8

    # Error telemetry (optional; unset keeps reports in the log only)
    RABBITMQ_URL: Optional[str] = None
    RABBITMQ_EXCHANGE: str = "gatherer.events"
    EVENTS_ORG: str = "local"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("FETCH_CONCURRENCY")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("FETCH_CONCURRENCY must be >= 1")
        return v

    @field_validator("DEBUGGER_URL")
    @classmethod
    def _has_scheme(cls, v: str) -> str:
        if "://" not in v:
            raise ValueError("DEBUGGER_URL must include a scheme, e.g. http://127.0.0.1:9222")
        return v.rstrip("/")

settings = Settings()

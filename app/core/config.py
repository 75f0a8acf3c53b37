from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["development", "production", "staging", "test"]


def _resolve_env_files() -> tuple[str, ...]:
    env = os.getenv("DRAFTPIPE_ENVIRONMENT", "development").lower()
    if env in {"prod", "production"}:
        return (".env", ".env.prod")
    if env in {"dev", "development"}:
        return (".env", ".env.dev")
    if env in {"test", "testing"}:
        return (".env", ".env.test")
    return (".env",)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DRAFTPIPE_",
        env_file=_resolve_env_files(),
        env_nested_delimiter="__",
        env_delimiter=",",
        extra="ignore",
    )

    environment: Environment = "development"
    project_name: str = "AI Blog Draft Assistant"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"
    log_json: bool = False
    rate_limit: str = "10/15minutes"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = []
    enable_docs: bool = True
    max_request_bytes: int = 10_000

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.6
    openai_max_output_tokens: int = 8192

    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_jitter: float = 1.0
    attempt_timeout: float = 60.0
    breaker_failure_threshold: int = 5
    breaker_reset_timeout: float = 60.0


@lru_cache
def get_settings() -> Settings:
    return Settings()

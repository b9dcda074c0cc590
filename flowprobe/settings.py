# flowprobe/settings.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized, env-driven defaults for the engine.
    Override via FLOWPROBE_* environment variables or a .env file at repo root.
    Values declared in a workflow's `config` block always take precedence.
    """
    log_level: str = Field(default="INFO")
    sse_timeout_ms: int = Field(default=10_000)
    default_http_timeout_ms: int | None = Field(default=None)
    reject_unauthorized: bool = Field(default=False)
    http2: bool = Field(default=False)
    retry_backoff_s: float = Field(default=0.5)
    max_concurrency: int | None = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="FLOWPROBE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

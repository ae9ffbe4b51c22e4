from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core
    app_name: str = Field(default="school-meals-api")
    environment: str = Field(default="dev")  # dev|staging|prod
    log_json: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    # Hosted backend (auth provider + Postgres)
    supabase_url: str | None = Field(default=None)
    supabase_anon_key: str | None = Field(default=None)
    database_url: str | None = Field(default=None)
    auth_timeout_seconds: float = Field(default=10.0, gt=0)

    # API
    api_prefix: str = Field(default="/api")
    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    history_default_limit: int = Field(default=10, ge=1)
    history_max_limit: int = Field(default=100, ge=1)

    # "created" stamps the server's current date on new selections;
    # "weekday" derives it from the menu's week_start and the selected day.
    selection_date_mode: Literal["created", "weekday"] = Field(default="created")

    # Observability
    metrics_enabled: bool = Field(default=True)
    sentry_dsn: str | None = Field(default=None)
    sentry_traces_sample_rate: float = Field(default=0.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _csv_to_list(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()

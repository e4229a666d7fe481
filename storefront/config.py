"""
storefront/config.py — Pydantic BaseSettings configuration
All runtime knobs for the API, the security pipeline and persistence.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_SECRETS = ("change-me-immediately", "your-secret-here", "")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ────────────────────────────────────────────────────────────
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000
    site_url: str = "http://localhost:3000"

    # ── Authentication ─────────────────────────────────────────────────────────
    jwt_secret: str = "change-me-immediately"
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 2 * 60 * 60
    token_cookie_name: str = "token"

    # ── Database ───────────────────────────────────────────────────────────────
    database_url: str = "sqlite:///./storefront.db"
    db_pool_size: int = 10
    debug_sql: bool = False

    # ── Security logging ──────────────────────────────────────────────────────
    logs_dir: str = "logs"
    # default for `python -m storefront.maintenance prune-logs`; the API never prunes
    log_retention_days: int = 30

    # ── Rate limiting ──────────────────────────────────────────────────────────
    # memory:// keeps counters in-process; redis://host:port/db shares them
    rate_limit_storage_uri: str = "memory://"
    rate_limit_sweep_seconds: int = 60

    # ── Edge screens ──────────────────────────────────────────────────────────
    allowed_origins: list[str] = ["http://localhost:3000"]
    csrf_exempt_prefixes: list[str] = ["/api/webhooks"]
    max_multipart_bytes: int = 10 * 1024 * 1024
    slow_request_ms: int = 1000

    # ── Uploads ────────────────────────────────────────────────────────────────
    upload_dir: str = "public/uploads/productos"
    upload_public_prefix: str = "/uploads/productos"
    max_upload_bytes: int = 5 * 1024 * 1024

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def has_placeholder_secret(self) -> bool:
        return self.jwt_secret in PLACEHOLDER_SECRETS


@lru_cache()
def get_settings() -> Settings:
    """Return cached Settings instance. Use this everywhere."""
    return Settings()

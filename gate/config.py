"""Application configuration."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = "sqlite+aiosqlite:///./gate.db"

    @field_validator("database_url", mode="after")
    @classmethod
    def normalize_db_url(cls, v: str) -> str:
        """Ensure postgresql+asyncpg scheme (hosted Postgres gives postgresql://)."""
        if v.startswith("postgresql://") and "+asyncpg" not in v:
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    log_level: str = "INFO"
    gate_version: str = "1.0.0"
    seal_timeout_seconds: float = 5.0
    approval_ttl_hours: int = 72
    remote_seal_url: str | None = None
    default_reviewer: str = "gate-reviewer"


settings = Settings()

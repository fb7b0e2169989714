"""TrainingHub configuration system using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrainingHubConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "TRAININGHUB"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite+aiosqlite:///./traininghub.db"

    # Auth (tokens are issued by the identity service; we only verify them)
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_algorithm: str = "HS256"

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5
    database_log_level: str = "WARNING"  # SQLAlchemy and aiosqlite loggers

    # Export pipeline
    export_dir: str = "exports"
    export_processor_enabled: bool = True
    export_poll_interval: float = 30.0  # seconds between polls
    export_batch_size: int = 5  # pending jobs claimed per poll
    export_collection_timeout: float = 300.0  # data collection deadline per job
    export_connect_timeout: float = 5.0  # per connection attempt
    export_connect_retries: int = 3
    export_retry_backoff_base: float = 1.0  # delay = base * 2**attempt
    export_drain_check_interval: float = 1.0
    export_stop_timeout: float = 600.0  # upper bound on shutdown drain
    export_retention_days: int = 7
    export_cleanup_interval: float = 3600.0  # 0 disables the cleanup loop

    @field_validator("export_batch_size", "export_connect_retries", "export_retention_days")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator(
        "export_poll_interval",
        "export_collection_timeout",
        "export_connect_timeout",
        "export_drain_check_interval",
    )
    @classmethod
    def validate_positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("database_log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def export_path(self) -> Path:
        path = Path(self.export_dir)
        if not path.is_absolute():
            path = self.base_dir / path
        return path


def get_config() -> TrainingHubConfig:
    """Factory function to create config instance."""
    return TrainingHubConfig()

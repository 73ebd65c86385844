import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    ⚠️ WARNING: SQLite is intended for local development and tests only.
    Set DATABASE_URL to a PostgreSQL connection string in production.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        is_production = bool(os.getenv("RENDER") or os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("DYNO"))
        if db_url.startswith("sqlite://") and is_production:
            logger.error(
                "⚠️ CRITICAL: SQLite detected in production environment! "
                "Set DATABASE_URL to a PostgreSQL connection string."
            )
        return db_url

    db_path = Path(__file__).parent.parent.parent / "activity_dedup.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON", description="Emit JSON log lines")
    dedup_cluster_mode: str = Field(
        default="single_seed",
        validation_alias="DEDUP_CLUSTER_MODE",
        description="Grouping strategy: single_seed or transitive",
    )
    dedup_max_error_details: int = Field(
        default=10,
        validation_alias="DEDUP_MAX_ERROR_DETAILS",
        description="Number of per-group error details kept in a report",
    )
    dedup_lock_ttl_seconds: int = Field(
        default=10 * 60,
        validation_alias="DEDUP_LOCK_TTL_SECONDS",
        description="TTL of the per-user deduplication lock",
    )
    dedup_time_tolerance_minutes: float = Field(
        default=30.0,
        validation_alias="DEDUP_TIME_TOLERANCE_MINUTES",
        description="Maximum start-time gap (minutes) for a non timezone-shifted pair",
    )
    dedup_duration_tolerance_minutes: float = Field(
        default=5.0,
        validation_alias="DEDUP_DURATION_TOLERANCE_MINUTES",
        description="Baseline duration tolerance floor (minutes)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("dedup_cluster_mode")
    @classmethod
    def validate_cluster_mode(cls, value: str) -> str:
        """Validate the clustering mode, falling back to single_seed."""
        normalized = value.lower().strip()
        if normalized not in {"single_seed", "transitive"}:
            logger.warning(f"Invalid DEDUP_CLUSTER_MODE '{value}'. Defaulting to single_seed.")
            return "single_seed"
        return normalized

    @field_validator("dedup_max_error_details", "dedup_lock_ttl_seconds")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"Value must be positive, got {value}")
        return value


settings = Settings()

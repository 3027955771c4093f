"""
Destination engine settings.

Pydantic-based settings with environment variable support.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Destination engine configuration."""

    # Connection Pool (per destination)
    db_pool_size: int = Field(default=5, ge=1, le=50, description="DB pool size")
    db_max_overflow: int = Field(default=5, ge=0, le=50, description="DB pool overflow")
    db_pool_timeout: int = Field(
        default=30, ge=1, le=600, description="DB pool checkout timeout (seconds)"
    )
    db_pool_recycle: int = Field(
        default=1800, ge=-1, description="DB pool recycle time (seconds, -1 disables)"
    )

    # Staging tables used by bulk merges
    temp_table_prefix: str = Field(
        default="engine_tmp", min_length=1, description="Prefix of staging table names"
    )

    # SQL debug logging
    ddl_debug_log_enabled: bool = Field(
        default=True, description="Log every DDL statement"
    )
    queries_debug_log_enabled: bool = Field(
        default=False, description="Log every DML statement (with bound values)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache()
def get_settings() -> EngineSettings:
    """Get cached settings instance."""
    return EngineSettings()

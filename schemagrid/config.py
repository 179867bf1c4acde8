"""Application configuration."""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="SchemaGrid", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    workers: int = Field(default=1, description="Number of workers")
    reload: bool = Field(default=False, description="Auto-reload on changes")

    # Conversion
    max_schema_size: int = Field(
        default=10485760, description="Max schema text size in bytes"
    )
    grid_min_rows: int = Field(
        default=10, description="Minimum number of rows in a converted grid"
    )

    # Collaboration
    collaboration_join_timeout: float = Field(
        default=5.0, description="Seconds a client waits for the active-users reply"
    )
    conflict_window_ms: int = Field(
        default=1000, description="Timestamp window in which same-cell edits conflict"
    )
    max_session_users: int = Field(
        default=50, description="Max online participants per session"
    )
    collaboration_outbox_size: int = Field(
        default=1000, description="Queued outbound messages per socket before the peer is dropped"
    )
    collaboration_close_timeout: float = Field(
        default=5.0, description="Seconds a closing socket may spend flushing its outbox"
    )
    default_conflict_strategy: str = Field(
        default="last-write-wins", description="Conflict strategy for new sessions"
    )

    # Monitoring
    metrics_enabled: bool = Field(default=True, description="Enable metrics")

    # CORS
    cors_enabled: bool = Field(default=True, description="Enable CORS")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="CORS origins",
    )
    cors_credentials: bool = Field(default=True, description="CORS credentials")
    cors_methods: List[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        description="CORS methods",
    )
    cors_headers: List[str] = Field(default=["*"], description="CORS headers")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() in ("development", "dev")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment.lower() in ("testing", "test")


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return Settings()


# Global settings instance
settings = get_settings()

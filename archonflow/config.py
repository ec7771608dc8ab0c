"""Application configuration."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ARCHONFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="ArchonFlow", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Entity store
    store_backend: str = Field(
        default="memory", description="Entity store backend (memory or sql)"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./archonflow.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Version control
    default_branch_name: str = Field(
        default="main", description="Name of the default branch created for new workflows"
    )
    max_ancestor_depth: int = Field(
        default=10000, description="Maximum parent hops when searching for a common ancestor"
    )
    history_page_size: int = Field(
        default=50, description="Default number of history entries returned"
    )
    diff_compare_positions: bool = Field(
        default=False, description="Report node position changes in diffs"
    )

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v):
        """Validate store backend name."""
        backend = v.strip().lower()
        if backend not in ("memory", "sql"):
            raise ValueError("Store backend must be 'memory' or 'sql'")
        return backend

    @field_validator("max_ancestor_depth", "history_page_size")
    @classmethod
    def validate_positive(cls, v):
        """Validate positive limits."""
        if v < 1:
            raise ValueError("Value must be a positive integer")
        return v

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

"""Configuration management for timeledger."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default data directory
TIMELEDGER_DIR = Path.home() / ".timeledger"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TIMELEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage settings
    data_dir: Path | None = Field(
        default=None,
        description="Storage area directory (default: ~/.timeledger/timetracker)",
    )
    database_name: str = Field(
        default="timetracker",
        description="Database file name, without extension",
    )
    store_backend: Literal["json", "sqlite"] = Field(
        default="json",
        description="Event store backend used by the CLI",
    )

    # Lifecycle settings
    active_state_pattern: str = Field(
        default=r"active|foreground",
        description="Regex matching lifecycle states considered active",
    )
    background_state_pattern: str = Field(
        default=r"background",
        description="Regex matching lifecycle states that trigger a pause sweep",
    )

    log_level: str = Field(
        default="WARNING",
        description="Log level for the command line",
    )

    def get_data_dir(self) -> Path:
        """Get the storage area directory, using default if not set."""
        if self.data_dir:
            return self.data_dir.expanduser()
        return TIMELEDGER_DIR / "timetracker"

    def get_database_path(self) -> Path:
        """Get the database file path for the configured backend."""
        suffix = ".db" if self.store_backend == "sqlite" else ".json"
        return self.get_data_dir() / f"{self.database_name}{suffix}"


# Global settings instance
settings = Settings()

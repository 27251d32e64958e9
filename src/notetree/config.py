"""Configuration module for the note tree core."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notetree import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default database
_USER_ENV = Path.home() / ".notetree" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Option name used in the options table for the snapshot window
HISTORY_SNAPSHOT_INTERVAL_OPTION = "history_snapshot_time_interval"


class NotetreeConfig(BaseModel):
    """Configuration for the note tree core."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTETREE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTETREE_DATABASE_PATH", "data/db/notetree.db")
        )
    )
    # When True, uses an in-memory SQLite database shared by one connection
    in_memory_db: bool = Field(
        default_factory=lambda: os.getenv("NOTETREE_IN_MEMORY_DB", "false").lower()
        in ("true", "1", "yes")
    )
    # Seed value (seconds) for the history_snapshot_time_interval option.
    # The live value is read from the options table on every update.
    history_snapshot_interval: int = Field(
        default_factory=lambda: int(
            os.getenv("NOTETREE_HISTORY_SNAPSHOT_INTERVAL", "600")
        )
    )
    # Parent id used for top-level placements
    root_note_id: str = Field(
        default_factory=lambda: os.getenv("NOTETREE_ROOT_NOTE_ID", "root")
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTETREE_LOG_LEVEL", "INFO").upper()
    )
    version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_config(self) -> "NotetreeConfig":
        """Validate numeric settings."""
        if self.history_snapshot_interval < 0:
            raise ValueError("history_snapshot_interval must be >= 0")
        if not self.root_note_id.strip():
            raise ValueError("root_note_id cannot be empty")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NotetreeConfig()

"""Configuration module for meowpad."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from meowpad import __version__

# Project-local .env first, then the user-level one next to the database
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

_USER_ENV = Path.home() / ".meowpad" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    return Path(value).expanduser() if value else None


class MeowpadConfig(BaseModel):
    """Configuration for meowpad."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("MEOWPAD_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: (
            _env_path("MEOWPAD_DATABASE_PATH")
            or Path.home() / ".meowpad" / "meowpad.db"
        )
    )
    # Logging
    log_dir: Optional[Path] = Field(default_factory=lambda: _env_path("MEOWPAD_LOG_DIR"))
    log_level: str = Field(
        default_factory=lambda: os.getenv("MEOWPAD_LOG_LEVEL", "WARNING").upper()
    )
    # Capture: network fetch limits
    fetch_timeout: float = Field(
        default_factory=lambda: float(os.getenv("MEOWPAD_FETCH_TIMEOUT", "5"))
    )
    fetch_connect_timeout: float = Field(
        default_factory=lambda: float(os.getenv("MEOWPAD_FETCH_CONNECT_TIMEOUT", "3.05"))
    )
    fetch_max_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MEOWPAD_FETCH_MAX_BYTES", str(5 * 1024**2)))
    )
    # A single retry on transient failures; 0 disables it
    fetch_retries: int = Field(
        default_factory=lambda: int(os.getenv("MEOWPAD_FETCH_RETRIES", "1"))
    )
    max_redirects: int = Field(
        default_factory=lambda: int(os.getenv("MEOWPAD_MAX_REDIRECTS", "5"))
    )
    user_agent: str = Field(default=f"meowpad/{__version__}")
    # Editor used for composing notes; falls back to $VISUAL / $EDITOR
    editor: Optional[str] = Field(default_factory=lambda: os.getenv("MEOWPAD_EDITOR"))

    @model_validator(mode="after")
    def _validate_limits(self) -> "MeowpadConfig":
        """Reject limits that would make fetching unbounded or impossible."""
        if self.fetch_timeout <= 0 or self.fetch_connect_timeout <= 0:
            raise ValueError("fetch timeouts must be > 0")
        if self.fetch_max_bytes < 1:
            raise ValueError("fetch_max_bytes must be >= 1")
        if self.fetch_retries < 0:
            raise ValueError("fetch_retries must be >= 0")
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be >= 0")
        if self.fetch_retries > 1:
            logger.warning(
                "fetch_retries=%d; captures may block for up to %.0fs per URL",
                self.fetch_retries,
                (self.fetch_retries + 1) * (self.fetch_timeout + self.fetch_connect_timeout),
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_log_dir(self) -> Path:
        """Directory for rotating log files (next to the database by default)."""
        if self.log_dir is not None:
            return self.get_absolute_path(self.log_dir)
        return self.get_absolute_path(self.database_path).parent / "logs"


# Create a global config instance
config = MeowpadConfig()

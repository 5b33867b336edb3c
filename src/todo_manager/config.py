"""
Runtime configuration for the To-Do Manager.

Settings are read from environment variables so the API server, the CLI and
the tests can all point at different databases and AI credentials.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_DATABASE_PATH = "todo_manager.db"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_TIMEOUT_SECONDS = 30.0
DEFAULT_LOG_LEVEL = "INFO"


@dataclass
class Settings:
    """
    Application settings resolved from the environment.

    Attributes:
        database_path: SQLite file backing the key-value store
        gemini_api_key: API key for subtask generation (None disables it)
        gemini_model: Gemini model name used for generateContent
        gemini_timeout_seconds: Socket timeout for the generation request
        log_level: Root logging level name
    """

    database_path: str = DEFAULT_DATABASE_PATH
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_timeout_seconds: float = DEFAULT_GEMINI_TIMEOUT_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from TODO_* and GEMINI_* environment variables."""
        timeout_raw = os.getenv("GEMINI_TIMEOUT_SECONDS")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_GEMINI_TIMEOUT_SECONDS
        except ValueError:
            logging.getLogger(__name__).warning(
                f"Ignoring invalid GEMINI_TIMEOUT_SECONDS={timeout_raw!r}"
            )
            timeout = DEFAULT_GEMINI_TIMEOUT_SECONDS

        return cls(
            database_path=os.getenv("TODO_DATABASE_PATH", DEFAULT_DATABASE_PATH),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            gemini_timeout_seconds=timeout,
            log_level=os.getenv("TODO_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure root logging once for an entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

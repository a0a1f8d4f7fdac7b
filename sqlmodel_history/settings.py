import os
from typing import Optional

from dotenv import load_dotenv

# Load .env file variables into environment
load_dotenv()


class Settings:
    """History tracking configuration settings loaded from environment variables."""

    # --- Helper Methods using os.getenv ---
    def get_database_url(self) -> Optional[str]:
        """Returns the database URL, preferring HISTORY_DATABASE_URL over DATABASE_URL."""
        return os.getenv("HISTORY_DATABASE_URL") or os.getenv("DATABASE_URL")

    def get_log_level(self, default: str = "INFO") -> str:
        """Gets the configured log level, defaulting if not set."""
        return os.getenv("LOG_LEVEL", default).upper()

    # --- Revision Writer Settings ---
    def get_revision_max_attempts(self) -> int:
        """Returns how many times a history insert is attempted when revisions collide."""
        try:
            attempts = int(os.getenv("HISTORY_REVISION_MAX_ATTEMPTS", "5"))
        except ValueError:
            raise ValueError("HISTORY_REVISION_MAX_ATTEMPTS environment variable must be an integer.")
        if attempts < 1:
            raise ValueError("HISTORY_REVISION_MAX_ATTEMPTS must be at least 1.")
        return attempts

    def get_actor_timeout(self) -> float | None:
        """Returns the actor resolution timeout in seconds, or None when unbounded."""
        raw = os.getenv("HISTORY_ACTOR_TIMEOUT", "10")
        if not raw.strip():
            return None
        try:
            timeout = float(raw)
        except ValueError:
            raise ValueError("HISTORY_ACTOR_TIMEOUT environment variable must be a number.")
        if timeout < 0:
            raise ValueError("HISTORY_ACTOR_TIMEOUT must not be negative.")
        return timeout or None

    # --- DB Pool Size Getters ---
    def get_db_pool_min_size(self) -> int:
        """Returns the minimum pool size for the history DB."""
        try:
            return int(os.getenv("HISTORY_DB_POOL_MIN_SIZE", "1"))
        except ValueError:
            raise ValueError("HISTORY_DB_POOL_MIN_SIZE environment variable must be an integer.")

    def get_db_pool_max_size(self) -> int:
        """Returns the maximum pool size for the history DB."""
        try:
            return int(os.getenv("HISTORY_DB_POOL_MAX_SIZE", "10"))
        except ValueError:
            raise ValueError("HISTORY_DB_POOL_MAX_SIZE environment variable must be an integer.")

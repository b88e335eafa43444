from pathlib import Path
from typing import Optional

from pydantic import HttpUrl, field_validator
from pydantic_settings import BaseSettings
from rich import print

from jobtracker.adapters.logging_adapter import LoggingAdapter
from jobtracker.core.interfaces.logging import LoggingPort


# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class TrackerSettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }
    JOBTRACKER_LOG_LEVEL: str = "INFO"
    JOBTRACKER_REMOTE_URL: HttpUrl = HttpUrl("http://localhost:8700/")
    JOBTRACKER_REMOTE_TIMEOUT: float = 15.0  # seconds, per request
    JOBTRACKER_POLL_INTERVAL: float = 1.0
    JOBTRACKER_COMPLETED_GRACE: float = 3.0
    JOBTRACKER_CANCELLED_GRACE: float = 3.0
    JOBTRACKER_FAILED_GRACE: float = 5.0
    JOBTRACKER_HISTORY_LIMIT: int = 100
    JOBTRACKER_HISTORY_DIR: Path = Path(".jobtracker")
    JOBTRACKER_HISTORY_KEY: str = "jobs_history"
    # Unset means "poll forever", matching the remote worker's own semantics
    JOBTRACKER_MAX_POLL_ERRORS: Optional[int] = None
    JOBTRACKER_RESULT_WAIT_TIMEOUT: Optional[float] = None
    JOBTRACKER_BATCH_MAX_CONCURRENT: int = 3
    JOBTRACKER_RECONCILE_ATTEMPTS: int = 3
    JOBTRACKER_SERVER_HOST: str = "0.0.0.0"
    JOBTRACKER_SERVER_PORT: int = 8000

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes"""
        logger.info("Job tracker settings:")
        print(self)

    @field_validator("JOBTRACKER_REMOTE_URL", mode="before")
    def ensure_trailing_slash(cls, value):
        """Ensure JOBTRACKER_REMOTE_URL has a trailing slash."""
        if isinstance(value, str) and not value.endswith("/"):
            value += "/"
        return value


class NoOpLogger(LoggingPort):
    def info(self, msg: str, *args):
        pass

    def warning(self, msg: str, *args):
        pass

    def error(self, msg: str, *args):
        pass

    def debug(self, msg: str, *args):
        pass


class _LoggerProxy(LoggingPort):
    """Stable module-level logger whose target can be swapped by `set_logger`."""

    def __init__(self, target: LoggingPort):
        self.target = target

    def info(self, msg: str, *args):
        self.target.info(msg, *args)

    def warning(self, msg: str, *args):
        self.target.warning(msg, *args)

    def error(self, msg: str, *args):
        self.target.error(msg, *args)

    def debug(self, msg: str, *args):
        self.target.debug(msg, *args)


app_settings = TrackerSettings()

logger = _LoggerProxy(LoggingAdapter("jobtracker", app_settings.JOBTRACKER_LOG_LEVEL))


def set_logger(new_logger: LoggingPort) -> None:
    """Replace the logging adapter used by core modules."""
    logger.target = new_logger

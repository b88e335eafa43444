"""Configuration models for core tracking components.

Pydantic-based configuration consolidating the settings of the polling
scheduler, history store and launcher so they can be injected and overridden
in tests.
"""

from typing import Optional
from pydantic import BaseModel, Field


class TrackerConfig(BaseModel):
    """Configuration for the job tracker.

    Attributes:
        poll_interval: Seconds between status queries, one global cadence for every job
        completed_grace: Seconds a Completed job stays in the active table
        cancelled_grace: Seconds a remotely Cancelled job stays in the active table
        failed_grace: Seconds a Failed job stays in the active table
        history_limit: Maximum number of persisted history entries
        history_storage_key: Key of the persisted history blob
        max_consecutive_poll_errors: Consecutive failed status queries before a job is
            dropped as lost (None = retry forever)
        result_wait_timeout: Seconds to keep polling a Completed job whose result is not
            parseable yet (None = wait forever)
        batch_max_concurrent: Launch calls in flight at once for a batch
        reconcile_attempts: Attempts for listing remote jobs at startup
    """

    poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Interval in seconds between job status queries"
    )

    completed_grace: float = Field(
        default=3.0,
        ge=0,
        description="Seconds a completed job remains visible in the active table"
    )

    cancelled_grace: float = Field(
        default=3.0,
        ge=0,
        description="Seconds a job cancelled by the remote remains visible in the active table"
    )

    failed_grace: float = Field(
        default=5.0,
        ge=0,
        description="Seconds a failed job remains visible in the active table"
    )

    history_limit: int = Field(
        default=100,
        ge=1,
        description="Maximum number of history entries kept (most recent first)"
    )

    history_storage_key: str = Field(
        default="jobs_history",
        min_length=1,
        description="Storage key of the persisted history blob"
    )

    max_consecutive_poll_errors: Optional[int] = Field(
        default=None,
        ge=1,
        description="Give up on a job after this many consecutive status query errors (None = never)"
    )

    result_wait_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Stop waiting for a parseable result after this many seconds (None = never)"
    )

    batch_max_concurrent: int = Field(
        default=3,
        ge=1,
        description="Maximum concurrent launch calls when starting a batch"
    )

    reconcile_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Retry attempts for listing remote jobs during startup reconciliation"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "TrackerConfig":
        """Build a TrackerConfig from a TrackerSettings instance."""
        return cls(
            poll_interval=settings.JOBTRACKER_POLL_INTERVAL,
            completed_grace=settings.JOBTRACKER_COMPLETED_GRACE,
            cancelled_grace=settings.JOBTRACKER_CANCELLED_GRACE,
            failed_grace=settings.JOBTRACKER_FAILED_GRACE,
            history_limit=settings.JOBTRACKER_HISTORY_LIMIT,
            history_storage_key=settings.JOBTRACKER_HISTORY_KEY,
            max_consecutive_poll_errors=settings.JOBTRACKER_MAX_POLL_ERRORS,
            result_wait_timeout=settings.JOBTRACKER_RESULT_WAIT_TIMEOUT,
            batch_max_concurrent=settings.JOBTRACKER_BATCH_MAX_CONCURRENT,
            reconcile_attempts=settings.JOBTRACKER_RECONCILE_ATTEMPTS,
        )

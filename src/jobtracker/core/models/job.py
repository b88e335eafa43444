from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_serializer,
    model_validator,
)
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import StrEnum


class JobKind(StrEnum):
    token_burn = "token-burn"
    token_burn_batch = "token-burn-batch"
    token_burn_each = "token-burn-each"
    account_close = "account-close"
    token_account_close = "token-account-close"
    token_account_close_batch = "token-account-close-batch"
    fund_distribute = "fund-distribute"
    refund = "refund"
    refund_amount = "refund-amount"
    balance_batch_fetch = "balance-batch-fetch"
    token_create = "token-create"
    other = "other"

    @classmethod
    def _missing_(cls, value):
        # kinds reported by a newer remote worker are tracked, not rejected
        return cls.other


class StatusCode(StrEnum):
    pending = "Pending"
    running = "Running"
    completed = "Completed"
    cancelled = "Cancelled"
    failed = "Failed"


TERMINAL_STATUSES = frozenset({StatusCode.completed, StatusCode.cancelled, StatusCode.failed})


class JobState(BaseModel):
    """Tagged union `Pending | Running | Completed | Cancelled | Failed{reason}`.

    The wire shape is either a bare status string or ``{"Failed": "<reason>"}``;
    both are accepted on input and produced on output.
    """

    model_config = ConfigDict(frozen=True)

    status: StatusCode
    reason: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, value: Any) -> Any:
        if isinstance(value, JobState):
            return value
        if isinstance(value, str):
            return {"status": value}
        if isinstance(value, dict) and "status" not in value and len(value) == 1:
            (tag, reason), = value.items()
            if tag == StatusCode.failed:
                return {"status": StatusCode.failed, "reason": None if reason is None else str(reason)}
            return {"status": tag}
        return value

    @model_serializer
    def _to_wire(self) -> Any:
        if self.status == StatusCode.failed:
            return {StatusCode.failed.value: self.reason or ""}
        return self.status.value

    @classmethod
    def pending(cls) -> "JobState":
        return cls(status=StatusCode.pending)

    @classmethod
    def running(cls) -> "JobState":
        return cls(status=StatusCode.running)

    @classmethod
    def completed(cls) -> "JobState":
        return cls(status=StatusCode.completed)

    @classmethod
    def cancelled(cls) -> "JobState":
        return cls(status=StatusCode.cancelled)

    @classmethod
    def failed(cls, reason: str) -> "JobState":
        return cls(status=StatusCode.failed, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __str__(self) -> str:
        if self.status == StatusCode.failed:
            return f"Failed({self.reason})"
        return self.status.value


class JobRecord(BaseModel):
    """Snapshot of one remote job as reported by the status query.

    Notes:
    - `id` is assigned by the remote worker and is opaque to the tracker.
    - `progress`, `current_step` and the item counters are only meaningful while Running.
    - `result` is the raw payload string; interpretation is left to ResultParser.
    - `metadata` holds the launch parameters and is never overwritten by polls.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: JobKind = Field(
        default=JobKind.other,
        validation_alias=AliasChoices("kind", "name"),
    )
    state: JobState = Field(default_factory=JobState.pending)
    progress: float = Field(
        default=0.0,
        ge=0,
        le=100,
        validation_alias=AliasChoices("progress", "progress_percentage"),
    )
    current_step: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("currentStep", "current_step"),
        serialization_alias="currentStep",
    )
    items_total: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("itemsTotal", "total_items"),
        serialization_alias="itemsTotal",
    )
    items_done: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("itemsDone", "completed_items"),
        serialization_alias="itemsDone",
    )
    result: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def status(self) -> StatusCode:
        return self.state.status

    def is_in_terminal_state(self) -> bool:
        return self.state.is_terminal


class HistoryEntry(JobRecord):
    """JobRecord plus lifecycle timestamps, as kept in the persisted history."""

    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        validation_alias=AliasChoices("startedAt", "started_at"),
        serialization_alias="startedAt",
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("completedAt", "completed_at"),
        serialization_alias="completedAt",
    )

    @computed_field
    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and terminal state; None until terminal."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def as_record(self) -> JobRecord:
        return JobRecord.model_validate(self.model_dump(exclude={"started_at", "completed_at", "duration"}))


class ParsedResult(BaseModel):
    ready: bool
    success: bool = False
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def not_ready(cls) -> "ParsedResult":
        return cls(ready=False)


class JobCompletion(BaseModel):
    """Completion notification delivered once per job to subscribers."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")
    kind: JobKind
    state: JobState
    reason: Optional[str] = None
    result: Optional[ParsedResult] = None
    record: JobRecord

    @property
    def succeeded(self) -> bool:
        return (
            self.state.status == StatusCode.completed
            and self.result is not None
            and self.result.success
        )


class JobStats(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    running: int = 0
    pending: int = 0
    success_rate: float = Field(default=0.0, serialization_alias="successRate")

    @property
    def success_rate_display(self) -> str:
        return f"{self.success_rate * 100:.1f}"


class BatchSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(serialization_alias="batchId")
    kind: JobKind
    job_ids: List[str] = Field(default_factory=list, serialization_alias="jobIds")
    total: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    running: int = 0
    pending: int = 0
    launch_errors: List[str] = Field(default_factory=list, serialization_alias="launchErrors")

    @computed_field(alias="isComplete")
    @property
    def is_complete(self) -> bool:
        return self.running == 0 and self.pending == 0

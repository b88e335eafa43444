"""Wire-format tests for the job models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from jobtracker.core.models.job import (
    BatchSummary,
    HistoryEntry,
    JobKind,
    JobRecord,
    JobState,
    JobStats,
    StatusCode,
)


class TestJobState:
    @pytest.mark.parametrize("wire", ["Pending", "Running", "Completed", "Cancelled"])
    def test_plain_states_round_trip_as_strings(self, wire):
        state = JobState.model_validate(wire)
        assert state.status == StatusCode(wire)
        assert state.model_dump() == wire

    def test_failed_carries_reason(self):
        state = JobState.model_validate({"Failed": "insufficient funds"})
        assert state.status == StatusCode.failed
        assert state.reason == "insufficient funds"
        assert state.model_dump() == {"Failed": "insufficient funds"}
        assert str(state) == "Failed(insufficient funds)"

    def test_unknown_state_is_rejected(self):
        with pytest.raises(ValidationError):
            JobState.model_validate("Exploded")


class TestJobRecord:
    def test_accepts_snake_case_worker_fields(self):
        rec = JobRecord.model_validate(
            {
                "id": "abc",
                "name": "token-burn-batch",
                "state": "Running",
                "progress_percentage": 42.5,
                "current_step": "Burning 3/7",
                "total_items": 7,
                "completed_items": 3,
            }
        )
        assert rec.kind == JobKind.token_burn_batch
        assert rec.progress == 42.5
        assert rec.current_step == "Burning 3/7"
        assert (rec.items_total, rec.items_done) == (7, 3)

    def test_serializes_camel_case(self):
        rec = JobRecord(id="abc", kind=JobKind.refund, state=JobState.failed("x"), current_step="s", items_total=2)
        data = rec.model_dump(mode="json", by_alias=True)
        assert data["kind"] == "refund"
        assert data["state"] == {"Failed": "x"}
        assert data["currentStep"] == "s"
        assert data["itemsTotal"] == 2

    def test_unknown_kind_maps_to_other(self):
        assert JobRecord.model_validate({"id": "a", "kind": "nft-mint", "state": "Pending"}).kind == JobKind.other

    def test_progress_bounds(self):
        with pytest.raises(ValidationError):
            JobRecord(id="a", progress=101)


class TestHistoryEntry:
    def test_duration_only_when_terminal(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entry = HistoryEntry(id="a", started_at=start)
        assert entry.duration is None
        done = entry.model_copy(
            update={"state": JobState.completed(), "completed_at": start + timedelta(seconds=12.5)}
        )
        assert done.duration == 12.5

    def test_json_round_trip_keeps_timestamps(self):
        entry = HistoryEntry(id="a", kind=JobKind.token_create, state=JobState.running())
        restored = HistoryEntry.model_validate(entry.model_dump(mode="json", by_alias=True))
        assert restored.started_at == entry.started_at
        assert restored.kind == JobKind.token_create

    def test_as_record(self):
        entry = HistoryEntry(id="a", kind=JobKind.refund, metadata={"w": 1})
        rec = entry.as_record()
        assert type(rec) is JobRecord
        assert rec.metadata == {"w": 1}


def test_stats_display_rounds_to_one_decimal():
    assert JobStats(total=3, completed=2, success_rate=2 / 3).success_rate_display == "66.7"


def test_batch_summary_is_complete():
    summary = BatchSummary(batch_id="b", kind=JobKind.token_burn, total=2, completed=1, running=1)
    assert summary.is_complete is False
    assert summary.model_dump(by_alias=True)["isComplete"] is False

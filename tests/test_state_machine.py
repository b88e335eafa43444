"""Unit tests for JobStateMachine transition and merge rules."""

import pytest

from jobtracker.core.managers.state_machine import JobStateMachine
from jobtracker.core.models.job import JobKind, JobState, StatusCode

from fakes import record


@pytest.fixture
def sm():
    return JobStateMachine()


class TestTransitions:
    @pytest.mark.parametrize("terminal", [StatusCode.completed, StatusCode.cancelled, StatusCode.failed])
    def test_terminal_states_have_no_outgoing_edges(self, sm, terminal):
        for target in StatusCode:
            assert sm.can_transition(terminal, target) is False

    def test_running_cannot_go_back_to_pending(self, sm):
        assert sm.can_transition(StatusCode.running, StatusCode.pending) is False
        assert sm.can_transition(StatusCode.pending, StatusCode.running) is True


class TestApply:
    def test_first_snapshot_is_taken_as_is(self, sm):
        t = sm.apply(None, record("j", "Running", progress=25, current_step="Burning"))
        assert t.applied and t.previous is None
        assert t.record.progress == 25
        assert t.record.current_step == "Burning"

    def test_first_snapshot_completed_pins_progress(self, sm):
        t = sm.apply(None, record("j", "Completed", progress=80, result="Success"))
        assert t.record.progress == 100

    def test_progress_updates_while_running(self, sm):
        current = record("j", "Running", progress=10)
        t = sm.apply(current, record("j", "Running", progress=40, items_total=10, items_done=4))
        assert t.applied and not t.changed_state
        assert t.record.progress == 40
        assert (t.record.items_total, t.record.items_done) == (10, 4)

    def test_completion_pins_progress_to_100(self, sm):
        current = record("j", "Running", progress=80, current_step="Closing")
        t = sm.apply(current, record("j", "Completed", progress=80, result="Success"))
        assert t.changed_state and t.terminal
        assert t.record.status == StatusCode.completed
        assert t.record.progress == 100
        assert t.record.result == "Success"

    def test_pending_after_running_keeps_running(self, sm):
        current = record("j", "Running", progress=50)
        t = sm.apply(current, record("j", "Pending"))
        assert t.record.status == StatusCode.running
        assert t.record.progress == 50

    def test_failed_keeps_reason(self, sm):
        t = sm.apply(record("j", "Running"), record("j", {"Failed": "insufficient funds"}))
        assert t.record.state == JobState.failed("insufficient funds")

    def test_terminal_record_is_frozen(self, sm):
        current = record("j", "Completed", progress=100, result="Success")
        t = sm.apply(current, record("j", "Running", progress=5, result="Success"))
        assert t.applied is False
        assert t.record == current

    def test_terminal_record_accepts_late_result(self, sm):
        current = record("j", "Completed", progress=100, result=None)
        t = sm.apply(current, record("j", "Completed", result='{"success": true}'))
        assert t.applied is True
        assert t.changed_state is False
        assert t.record.result == '{"success": true}'

    def test_kind_and_metadata_survive_polls(self, sm):
        current = record("j", "Running", kind=JobKind.refund, metadata={"wallet": "w1"})
        t = sm.apply(current, record("j", "Running", kind=JobKind.other, metadata={}))
        assert t.record.kind == JobKind.refund
        assert t.record.metadata == {"wallet": "w1"}


class TestForce:
    def test_force_cancelled(self, sm):
        forced = sm.force(record("j", "Running", progress=30), JobState.cancelled())
        assert forced.status == StatusCode.cancelled
        assert forced.progress == 30

    def test_force_does_not_override_terminal(self, sm):
        done = record("j", "Completed", result="Success")
        assert sm.force(done, JobState.cancelled()) == done

"""Transition rules for a single JobRecord.

Polls report full snapshots; the state machine merges a snapshot into the
previously known record and refuses any change once a terminal state has
been recorded.
"""

from dataclasses import dataclass
from typing import Optional

from jobtracker.core.models.job import JobRecord, JobState, StatusCode
from jobtracker.core.settings import logger

# Allowed source -> target transitions. Terminal states have no outgoing edges.
ALLOWED_TRANSITIONS = {
    StatusCode.pending: {
        StatusCode.pending,
        StatusCode.running,
        StatusCode.completed,
        StatusCode.cancelled,
        StatusCode.failed,
    },
    StatusCode.running: {
        StatusCode.running,
        StatusCode.completed,
        StatusCode.cancelled,
        StatusCode.failed,
    },
    StatusCode.completed: set(),
    StatusCode.cancelled: set(),
    StatusCode.failed: set(),
}


@dataclass(frozen=True)
class Transition:
    record: JobRecord
    previous: Optional[StatusCode]
    applied: bool

    @property
    def changed_state(self) -> bool:
        return self.applied and self.previous != self.record.status

    @property
    def terminal(self) -> bool:
        return self.record.is_in_terminal_state()


class JobStateMachine:
    def can_transition(self, source: StatusCode, target: StatusCode) -> bool:
        return target in ALLOWED_TRANSITIONS[source]

    def apply(self, current: Optional[JobRecord], incoming: JobRecord) -> Transition:
        """Merge `incoming` into `current` and return the resulting record.

        - Terminal records are frozen: the incoming snapshot is ignored, except
          for a result payload arriving after the terminal state.
        - A Running job reported as Pending again keeps Running.
        - progress/current_step/item counters only move while Running.
        - A Completed job's progress is pinned to 100.
        - `kind` and `metadata` come from the launch and are never overwritten.
        """
        if current is None:
            return Transition(record=self._normalize(incoming), previous=None, applied=True)

        if current.is_in_terminal_state():
            if incoming.state == current.state and incoming.result != current.result:
                # terminal state and result payload are not written atomically remotely
                merged = current.model_copy(update={"result": incoming.result})
                return Transition(record=merged, previous=current.status, applied=True)
            if incoming.state != current.state:
                logger.debug(
                    f"[state] ignoring {incoming.state} for terminal job_id={current.id} state={current.state}"
                )
            return Transition(record=current, previous=current.status, applied=False)

        target = incoming.state
        if not self.can_transition(current.status, target.status):
            logger.debug(
                f"[state] refusing {current.status}->{target.status} job_id={current.id}; keeping {current.status}"
            )
            target = current.state

        merged = current.model_copy(update={"state": target, "result": incoming.result})
        if target.status == StatusCode.running:
            merged = merged.model_copy(
                update={
                    "progress": incoming.progress,
                    "current_step": incoming.current_step,
                    "items_total": incoming.items_total,
                    "items_done": incoming.items_done,
                }
            )
        elif target.status == StatusCode.completed:
            merged = merged.model_copy(update={"progress": 100.0})
        return Transition(record=merged, previous=current.status, applied=True)

    def _normalize(self, incoming: JobRecord) -> JobRecord:
        if incoming.state.status == StatusCode.completed:
            return incoming.model_copy(update={"progress": 100.0})
        if incoming.state.status != StatusCode.running:
            return incoming.model_copy(update={"current_step": None})
        return incoming

    def force(self, current: JobRecord, state: JobState) -> JobRecord:
        """Apply a locally decided terminal state (e.g. acknowledged cancellation)."""
        if current.is_in_terminal_state():
            return current
        return current.model_copy(update={"state": state})

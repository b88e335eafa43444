"""PollingScheduler: one independent polling task per active job id.

Responsibilities:
1. Idempotent registration (at most one loop per job id).
2. Per tick: query status, merge through JobStateMachine, write the active
   table and the history, notify observers.
3. Classify terminal states, parse results, fire the completion notification
   once, and evict the job from the active table after its grace window.
4. Explicit cancellation (no grace window) and startup reconciliation.
5. Teardown of every loop and eviction timer on shutdown.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from jobtracker.core.config import TrackerConfig
from jobtracker.core.exceptions import ParseError, PollError, RemoteFailure
from jobtracker.core.interfaces.observers import JobEventObserver
from jobtracker.core.interfaces.remote_jobs import RemoteJobsPort
from jobtracker.core.logging_config import correlation_scope
from jobtracker.core.managers.active_jobs import ActiveJobTable
from jobtracker.core.managers.history_store import HistoryStore
from jobtracker.core.managers.result_parser import ResultParser
from jobtracker.core.managers.state_machine import JobStateMachine
from jobtracker.core.models.job import (
    JobCompletion,
    JobKind,
    JobRecord,
    JobState,
    ParsedResult,
    StatusCode,
)
from jobtracker.core.settings import logger


@dataclass
class _LoopState:
    """Per-loop counters; owned by exactly one polling task."""

    consecutive_errors: int = 0
    completed_since: Optional[float] = None
    ticks: int = 0


class PollingScheduler:
    """Owns the per-job polling loops and the ActiveJobTable.

    The scheduler is the only writer of both the active table and (after the
    launcher's provisional insert) the history.
    """

    def __init__(
        self,
        remote: RemoteJobsPort,
        history: HistoryStore,
        config: TrackerConfig,
        parser: Optional[ResultParser] = None,
        state_machine: Optional[JobStateMachine] = None,
        active: Optional[ActiveJobTable] = None,
        observers: Optional[list[JobEventObserver]] = None,
    ) -> None:
        self._remote = remote
        self._history = history
        self.config = config
        self._parser = parser or ResultParser()
        self._state_machine = state_machine or JobStateMachine()
        self._active = active or ActiveJobTable()
        self._observers: List[JobEventObserver] = list(observers or [])

        self._loops: Dict[str, asyncio.Task] = {}
        self._evictions: Dict[str, asyncio.Task] = {}
        self._registrations: Dict[str, tuple[JobKind, Dict[str, Any]]] = {}
        self._results: Dict[str, ParsedResult] = {}
        self._finished: Set[str] = set()
        self._shutdown = False

    def add_observer(self, observer: JobEventObserver) -> None:
        self._observers.append(observer)

    # ---------------- Observer fan-out -----------------
    async def _notify(self, event: str, *args: Any) -> None:
        for observer in self._observers:
            handler = getattr(observer, event, None)
            if handler is None:
                continue
            try:
                await handler(*args)
            except Exception as exc:
                logger.error(
                    f"[observer:error] {event} failed observer={type(observer).__name__} error={exc}"
                )

    # ---------------- Registration -----------------
    async def register(
        self,
        job_id: str,
        kind: JobKind,
        metadata: Optional[Dict[str, Any]] = None,
        initial: Optional[JobRecord] = None,
    ) -> bool:
        """Start polling `job_id`.

        Returns False when the id is already tracked (a live loop, or a
        terminal job still inside its grace window) or after shutdown.
        """
        if self._shutdown:
            logger.warning(f"[poll] register after shutdown ignored job_id={job_id}")
            return False
        if self.is_tracked(job_id):
            logger.debug(f"[poll] already tracking job_id={job_id}")
            return False

        metadata = dict(metadata or {})
        if initial is not None:
            record = initial.model_copy(update={"kind": kind, "metadata": metadata})
        else:
            record = JobRecord(id=job_id, kind=kind, state=JobState.pending(), metadata=metadata)

        # Reserve the id before the first await so concurrent calls stay idempotent
        self._registrations[job_id] = (kind, metadata)
        task = asyncio.create_task(self._poll_loop(job_id), name=f"poll:{job_id}")
        self._loops[job_id] = task
        task.add_done_callback(lambda t, jid=job_id: self._on_loop_done(jid, t))

        # the loop cannot tick before this put: no suspension point since create_task
        await self._active.put(record)
        logger.info(f"[poll] registered job_id={job_id} kind={kind}")
        await self._notify("on_job_registered", record)
        return True

    def _on_loop_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._loops.get(job_id) is task:
            del self._loops[job_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[poll] loop crashed job_id={job_id} err={exc!r}")

    # ---------------- Polling -----------------
    async def _poll_loop(self, job_id: str) -> None:
        """Query status until a definite terminal outcome, loss, or shutdown.

        A job's next query is never issued before the previous one resolved, so
        responses are applied strictly in issuance order.
        """
        state = _LoopState()
        with correlation_scope(job_id):
            try:
                while not self._shutdown:
                    state.ticks += 1
                    if await self._tick(job_id, state):
                        logger.debug(f"[poll] loop finished job_id={job_id} ticks={state.ticks}")
                        return
                    await asyncio.sleep(self.config.poll_interval)
            except asyncio.CancelledError:
                logger.debug(f"[poll] loop cancelled job_id={job_id} ticks={state.ticks}")
                raise

    async def _tick(self, job_id: str, state: _LoopState) -> bool:
        """Run one poll; returns True when the loop must stop."""
        try:
            incoming = await self._remote.get_job_status(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return await self._handle_poll_error(job_id, state, PollError(job_id, exc))
        state.consecutive_errors = 0

        if incoming is None:
            logger.warning(f"[poll] job not found remotely, dropping job_id={job_id}")
            await self._drop_lost(job_id)
            return True

        kind, metadata = self._registrations.get(job_id, (incoming.kind, incoming.metadata))
        if kind == JobKind.other:
            kind = incoming.kind
        incoming = incoming.model_copy(update={"kind": kind, "metadata": metadata})

        transition = self._state_machine.apply(self._active.get(job_id), incoming)
        record = transition.record
        if transition.applied:
            await self._active.put(record)
            await self._history.upsert(record)
            await self._notify("on_job_updated", record)
            if transition.changed_state:
                logger.info(f"[poll] state {transition.previous}->{record.state} job_id={job_id}")

        status = record.status
        if status in (StatusCode.pending, StatusCode.running):
            return False
        if status == StatusCode.completed:
            return await self._handle_completed(record, state)
        if status == StatusCode.failed:
            failure = RemoteFailure(job_id, record.state.reason or "")
            logger.warning(f"[poll] job failed job_id={job_id} reason={failure.reason}")
            await self._finish(record, None, self.config.failed_grace, reason=failure.reason)
            return True
        logger.info(f"[poll] job cancelled remotely job_id={job_id}")
        await self._finish(record, None, self.config.cancelled_grace)
        return True

    async def _handle_poll_error(self, job_id: str, state: _LoopState, error: PollError) -> bool:
        state.consecutive_errors += 1
        logger.warning(f"[poll] {error.message} (consecutive={state.consecutive_errors})")
        limit = self.config.max_consecutive_poll_errors
        if limit is not None and state.consecutive_errors >= limit:
            logger.warning(f"[poll] giving up after {state.consecutive_errors} errors job_id={job_id}")
            await self._drop_lost(job_id)
            return True
        return False

    async def _handle_completed(self, record: JobRecord, state: _LoopState) -> bool:
        parsed = self._parser.parse(record.result, record.kind)
        if not parsed.ready:
            now = asyncio.get_running_loop().time()
            if state.completed_since is None:
                state.completed_since = now
            waited = now - state.completed_since
            timeout = self.config.result_wait_timeout
            if timeout is None or waited < timeout:
                logger.debug(f"[poll] completed but result not ready job_id={record.id} waited={waited:.1f}s")
                return False
            error = ParseError(record.id, record.result, waited)
            logger.error(f"[poll] {error.message}")
            parsed = ParsedResult(
                ready=True,
                success=False,
                payload={"raw_result": record.result, "parse_error": error.message},
            )
        await self._finish(record, parsed, self.config.completed_grace)
        return True

    async def _finish(
        self,
        record: JobRecord,
        parsed: Optional[ParsedResult],
        grace: Optional[float],
        reason: Optional[str] = None,
    ) -> None:
        """Store the result, fire the completion notification, arm eviction."""
        if record.id in self._finished:
            return
        self._finished.add(record.id)
        if parsed is not None:
            self._store_result(record.id, parsed)
        completion = JobCompletion(
            job_id=record.id,
            kind=record.kind,
            state=record.state,
            reason=reason,
            result=parsed,
            record=record,
        )
        await self._notify("on_job_completed", completion)
        if grace is not None:
            self._schedule_eviction(record.id, grace)

    def _store_result(self, job_id: str, parsed: ParsedResult) -> None:
        # bounded like the history: oldest results go first
        self._results.pop(job_id, None)
        self._results[job_id] = parsed
        while len(self._results) > self.config.history_limit:
            self._results.pop(next(iter(self._results)))

    def forget(self, job_id: str) -> None:
        """Drop the stored result of a job that left the history."""
        self._results.pop(job_id, None)

    async def _drop_lost(self, job_id: str) -> None:
        await self._active.remove(job_id)
        self._registrations.pop(job_id, None)
        await self._notify("on_job_lost", job_id)

    # ---------------- Grace window -----------------
    def _schedule_eviction(self, job_id: str, grace: float) -> None:
        self._cancel_eviction(job_id)
        task = asyncio.create_task(self._evict_after(job_id, grace), name=f"evict:{job_id}")
        self._evictions[job_id] = task
        task.add_done_callback(
            lambda t, jid=job_id: self._evictions.pop(jid, None) if self._evictions.get(jid) is t else None
        )

    async def _evict_after(self, job_id: str, grace: float) -> None:
        await asyncio.sleep(grace)
        await self._active.remove(job_id)
        self._registrations.pop(job_id, None)
        self._finished.discard(job_id)
        logger.debug(f"[poll] evicted job_id={job_id} after {grace}s grace")

    def _cancel_eviction(self, job_id: str) -> None:
        task = self._evictions.pop(job_id, None)
        if task is not None:
            task.cancel()

    # ---------------- Cancellation -----------------
    async def cancel(self, job_id: str) -> bool:
        """Cancel remotely; on acknowledgment stop the loop and drop the job now.

        Returns False (no-op) when no loop exists for `job_id`, when the remote
        call fails, or when the remote refuses.
        """
        if job_id not in self._loops:
            logger.debug(f"[cancel] no active loop job_id={job_id}")
            return False
        try:
            acknowledged = await self._remote.cancel_job(job_id)
        except Exception as exc:
            logger.warning(f"[cancel] remote cancel failed job_id={job_id} err={exc}")
            return False
        if not acknowledged:
            logger.info(f"[cancel] remote refused cancellation job_id={job_id}")
            return False

        task = self._loops.pop(job_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._cancel_eviction(job_id)
        current = await self._active.remove(job_id)
        kind, metadata = self._registrations.pop(job_id, (JobKind.other, {}))
        logger.info(f"[cancel] cancelled job_id={job_id}")

        if job_id in self._finished:
            # the loop reached its own terminal outcome first; already notified
            self._finished.discard(job_id)
            return True

        base = current or JobRecord(id=job_id, kind=kind, state=JobState.running(), metadata=metadata)
        record = self._state_machine.force(base, JobState.cancelled())
        await self._history.upsert(record)
        await self._finish(record, None, grace=None)
        self._finished.discard(job_id)
        return True

    # ---------------- Reconciliation -----------------
    async def reconcile(self, existing: Iterable[JobRecord]) -> int:
        """Re-attach loops to jobs already running remotely.

        Terminal jobs are skipped; already-polled ids are no-ops through
        `register`. The snapshot is upserted so history never duplicates ids.
        Returns the number of loops started.
        """
        attached = 0
        for record in existing:
            if record.is_in_terminal_state():
                continue
            if self.is_tracked(record.id):
                logger.debug(f"[reconcile] already tracking job_id={record.id}")
                continue
            await self._history.upsert(record)
            if await self.register(record.id, record.kind, record.metadata, initial=record):
                attached += 1
        logger.info(f"[reconcile] attached {attached} loop(s)")
        return attached

    # ---------------- Queries -----------------
    @property
    def active(self) -> ActiveJobTable:
        return self._active

    def active_jobs(self) -> List[JobRecord]:
        return self._active.snapshot()

    def get_active(self, job_id: str) -> Optional[JobRecord]:
        return self._active.get(job_id)

    def get_result(self, job_id: str) -> Optional[ParsedResult]:
        result = self._results.get(job_id)
        return result.model_copy() if result else None

    def is_polling(self, job_id: str) -> bool:
        return job_id in self._loops

    def is_tracked(self, job_id: str) -> bool:
        """True while polling or while a terminal job waits out its grace window."""
        return job_id in self._loops or job_id in self._finished or job_id in self._evictions

    @property
    def polling_count(self) -> int:
        return len(self._loops)

    @property
    def accepting(self) -> bool:
        return not self._shutdown

    # ---------------- Lifecycle -----------------
    def resume(self) -> None:
        """Accept registrations again after `shutdown`."""
        self._shutdown = False

    async def shutdown(self) -> None:
        self._shutdown = True
        tasks = list(self._loops.values()) + list(self._evictions.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._evictions.clear()
        self._registrations.clear()
        self._results.clear()
        self._finished.clear()
        await self._active.clear()
        logger.debug(f"[poll] shutdown stopped {len(tasks)} task(s)")

"""JobTracker: the explicit service instance consumers talk to.

Owns and wires the HistoryStore, PollingScheduler, JobLauncher,
CancellationManager and SubscriptionHub. Nothing runs before `start()` and
every loop and timer is released by `stop()`.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from jobtracker.core.config import TrackerConfig
from jobtracker.core.interfaces.observers import JobEventObserver
from jobtracker.core.interfaces.remote_jobs import RemoteJobsPort
from jobtracker.core.interfaces.retry import RetryPort
from jobtracker.core.interfaces.storage import KeyValueStoragePort
from jobtracker.core.managers.cancellation import CancellationManager
from jobtracker.core.managers.history_store import HistoryStore
from jobtracker.core.managers.job_launcher import JobLauncher, LaunchedBatch
from jobtracker.core.managers.observers import (
    BatchCallback,
    CompletionCallback,
    LoggingObserver,
    SubscriptionHub,
)
from jobtracker.core.managers.polling_scheduler import PollingScheduler
from jobtracker.core.managers.stats import compute_stats, summarize_batch
from jobtracker.core.models.job import (
    BatchSummary,
    HistoryEntry,
    JobKind,
    JobRecord,
    JobStats,
    ParsedResult,
)
from jobtracker.core.settings import logger


class JobTracker:
    def __init__(
        self,
        remote: RemoteJobsPort,
        storage: KeyValueStoragePort,
        config: Optional[TrackerConfig] = None,
        retry_port: Optional[RetryPort] = None,
        observers: Optional[List[JobEventObserver]] = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self._remote = remote
        self._retry = retry_port
        self.history = HistoryStore(
            storage,
            limit=self.config.history_limit,
            storage_key=self.config.history_storage_key,
        )
        self.subscriptions = SubscriptionHub(retain=self.config.history_limit)
        self.scheduler = PollingScheduler(
            remote,
            self.history,
            self.config,
            observers=[self.subscriptions, LoggingObserver(), *(observers or [])],
        )
        self.launcher = JobLauncher(remote, self.scheduler, self.history, self.config)
        self.cancellation = CancellationManager(self.scheduler)
        self._started = False

    # ---------------- Lifecycle -----------------
    async def start(self, reconcile: bool = True) -> None:
        """Load persisted history, then re-attach loops to remote jobs."""
        if self._started:
            return
        self._started = True
        self.scheduler.resume()
        loaded = await self.history.load()
        logger.info(f"[history] loaded {loaded} persisted entries")
        if reconcile:
            await self.reconcile_remote()

    async def reconcile_remote(self) -> int:
        """List jobs on the remote worker and poll every non-terminal one.

        Listing failures are logged; the tracker keeps working without the
        re-attached jobs.
        """
        try:
            if self._retry:
                existing = await self._retry.execute(
                    self._remote.list_jobs,
                    attempts=self.config.reconcile_attempts,
                )
            else:
                existing = await self._remote.list_jobs()
        except Exception as exc:
            logger.warning(f"[reconcile] could not list remote jobs err={exc}")
            return 0
        return await self.scheduler.reconcile(existing)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.scheduler.shutdown()
        logger.info("[poll] tracker stopped")

    async def __aenter__(self) -> "JobTracker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    @property
    def started(self) -> bool:
        return self._started

    # ---------------- Launch / cancel -----------------
    async def start_job(self, kind: JobKind, params: Optional[Dict[str, Any]] = None) -> str:
        return await self.launcher.start(kind, params)

    async def start_batch(
        self,
        kind: JobKind,
        requests: Sequence[Dict[str, Any]],
        max_concurrent: Optional[int] = None,
    ) -> LaunchedBatch:
        return await self.launcher.start_batch(kind, requests, max_concurrent)

    async def cancel_job(self, job_id: str) -> bool:
        return await self.cancellation.cancel(job_id)

    async def cancel_batch(self, batch_id: str) -> Optional[Dict[str, bool]]:
        """Cancel every job of a batch; None for an unknown batch id."""
        batch = self.launcher.get_batch(batch_id)
        if batch is None:
            return None
        return await self.cancellation.cancel_many(batch.job_ids)

    # ---------------- Queries -----------------
    def get_active_jobs(self) -> List[JobRecord]:
        return self.scheduler.active_jobs()

    def get_active_job(self, job_id: str) -> Optional[JobRecord]:
        return self.scheduler.get_active(job_id)

    def get_result(self, job_id: str) -> Optional[ParsedResult]:
        return self.scheduler.get_result(job_id)

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Active record when in flight, otherwise the history entry."""
        active = self.scheduler.get_active(job_id)
        if active is not None:
            return active
        return await self.history.get(job_id)

    async def get_history(self, kind: Optional[JobKind] = None) -> List[HistoryEntry]:
        if kind is not None:
            return await self.history.by_kind(kind)
        return await self.history.snapshot()

    async def get_recent_history(self, within: timedelta = timedelta(hours=24)) -> List[HistoryEntry]:
        return await self.history.recent(within)

    async def get_stats(self) -> JobStats:
        return compute_stats(await self.history.snapshot())

    async def get_batch(self, batch_id: str) -> Optional[BatchSummary]:
        batch = self.launcher.get_batch(batch_id)
        if batch is None:
            return None
        records = [await self.get_job(job_id) for job_id in batch.job_ids]
        return summarize_batch(batch.batch_id, batch.kind, batch.job_ids, records, batch.launch_errors)

    # ---------------- History maintenance -----------------
    async def remove_from_history(self, job_id: str) -> bool:
        removed = await self.history.remove(job_id)
        if removed:
            self._forget([job_id])
        return removed

    async def clear_history(self) -> None:
        entries = await self.history.snapshot()
        await self.history.clear()
        self._forget(e.id for e in entries)

    async def clear_terminal_history(self) -> int:
        terminal = [e.id for e in await self.history.snapshot() if e.is_in_terminal_state()]
        removed = await self.history.clear_terminal()
        self._forget(terminal)
        return removed

    def _forget(self, job_ids: Iterable[str]) -> None:
        # stored results and outcomes follow their history entries out
        for job_id in job_ids:
            self.scheduler.forget(job_id)
            self.subscriptions.forget(job_id)

    # ---------------- Subscriptions -----------------
    async def subscribe(self, job_id: str, callback: CompletionCallback):
        return await self.subscriptions.subscribe(job_id, callback)

    async def subscribe_batch(self, batch_id: str, callback: BatchCallback):
        """Subscribe to a launched batch; raises KeyError for unknown ids."""
        batch = self.launcher.get_batch(batch_id)
        if batch is None:
            raise KeyError(batch_id)
        return await self.subscriptions.subscribe_batch(batch_id, batch.job_ids, callback)

    def subscribe_all(self, callback: CompletionCallback):
        return self.subscriptions.subscribe_all(callback)

"""JobLauncher: create remote jobs and hand them to the PollingScheduler."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from jobtracker.core.config import TrackerConfig
from jobtracker.core.exceptions import LaunchError, RemoteJobsError
from jobtracker.core.interfaces.remote_jobs import RemoteJobsPort
from jobtracker.core.managers.history_store import HistoryStore
from jobtracker.core.managers.polling_scheduler import PollingScheduler
from jobtracker.core.models.job import JobKind, JobRecord, JobState
from jobtracker.core.settings import logger

PROVISIONAL_STEP = "Starting..."


@dataclass
class LaunchedBatch:
    batch_id: str
    kind: JobKind
    job_ids: List[str] = field(default_factory=list)
    launch_errors: List[str] = field(default_factory=list)


class JobLauncher:
    def __init__(
        self,
        remote: RemoteJobsPort,
        scheduler: PollingScheduler,
        history: HistoryStore,
        config: TrackerConfig,
    ) -> None:
        self._remote = remote
        self._scheduler = scheduler
        self._history = history
        self.config = config
        self._batches: Dict[str, LaunchedBatch] = {}

    async def start(self, kind: JobKind, params: Optional[Dict[str, Any]] = None) -> str:
        """Create a remote job and start tracking it; returns the job id.

        The provisional history entry (Running, progress 0) is written before
        the polling loop exists so history consumers see the job immediately.

        Raises:
            LaunchError: the remote worker is unreachable or rejected the job,
                or the tracker is stopped and cannot poll it.
        """
        params = dict(params or {})
        if not self._scheduler.accepting:
            raise LaunchError(
                kind=kind,
                message=f"Could not start {kind} job: tracker is stopped",
                diagnostic="TrackerStopped",
            )
        try:
            job_id = await self._remote.start_job(kind, params)
        except RemoteJobsError as exc:
            logger.error(f"[launch] remote rejected kind={kind} status={exc.status} detail={exc.response.detail}")
            raise LaunchError(
                kind=kind,
                message=f"Could not start {kind} job: {exc.response.detail or exc.response.title}",
                upstream_status=exc.status,
                diagnostic=exc.response.title,
            ) from exc
        except LaunchError:
            raise
        except Exception as exc:
            logger.error(f"[launch] unexpected error kind={kind} err={exc!r}")
            raise LaunchError(
                kind=kind,
                message=f"Could not start {kind} job: {exc}",
                diagnostic=type(exc).__name__,
            ) from exc

        if not job_id:
            raise LaunchError(kind=kind, message=f"Remote worker returned no job id for {kind}")

        provisional = JobRecord(
            id=job_id,
            kind=kind,
            state=JobState.running(),
            progress=0.0,
            current_step=PROVISIONAL_STEP,
            metadata=params,
        )
        await self._history.upsert(provisional)
        registered = await self._scheduler.register(job_id, kind, params)
        if not registered and not self._scheduler.is_tracked(job_id):
            logger.error(f"[launch] job_id={job_id} started remotely but could not be tracked")
            raise LaunchError(
                kind=kind,
                message=f"Job {job_id} was started but the tracker is stopped",
                diagnostic="TrackerStopped",
            )
        logger.info(f"[launch] started job_id={job_id} kind={kind}")
        return job_id

    async def start_batch(
        self,
        kind: JobKind,
        requests: Sequence[Dict[str, Any]],
        max_concurrent: Optional[int] = None,
    ) -> LaunchedBatch:
        """Launch one job per request, at most `max_concurrent` launches in flight.

        A failed launch is recorded in `launch_errors` and does not abort the
        remaining requests. Job ids keep the order of `requests`.
        """
        limit = max_concurrent or self.config.batch_max_concurrent
        semaphore = asyncio.Semaphore(limit)
        batch = LaunchedBatch(batch_id=uuid.uuid4().hex, kind=kind)

        async def launch_one(index: int, params: Dict[str, Any]) -> Optional[str]:
            async with semaphore:
                try:
                    return await self.start(kind, params)
                except LaunchError as exc:
                    batch.launch_errors.append(f"#{index}: {exc.message}")
                    return None

        results = await asyncio.gather(*(launch_one(i, p) for i, p in enumerate(requests)))
        batch.job_ids = [job_id for job_id in results if job_id]
        self._batches[batch.batch_id] = batch
        while len(self._batches) > self.config.history_limit:
            self._batches.pop(next(iter(self._batches)))
        logger.info(
            f"[launch] batch {batch.batch_id} kind={kind} started={len(batch.job_ids)} "
            f"failed={len(batch.launch_errors)}"
        )
        return batch

    def get_batch(self, batch_id: str) -> Optional[LaunchedBatch]:
        return self._batches.get(batch_id)

    def batches(self) -> List[LaunchedBatch]:
        return list(self._batches.values())

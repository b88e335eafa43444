"""Ephemeral table of in-flight jobs (never persisted)."""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from jobtracker.core.models.job import JobRecord


class ActiveJobTable:
    """jobId -> latest JobRecord, written only by the PollingScheduler.

    Writes are serialized on a lock; reads return copies so consumers never
    observe a record while it is being replaced.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def put(self, record: JobRecord) -> None:
        async with self._lock:
            self._jobs[record.id] = record

    async def remove(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            return self._jobs.pop(job_id, None)

    async def clear(self) -> None:
        async with self._lock:
            self._jobs.clear()

    def get(self, job_id: str) -> Optional[JobRecord]:
        record = self._jobs.get(job_id)
        return record.model_copy() if record else None

    def snapshot(self) -> List[JobRecord]:
        return [r.model_copy() for r in list(self._jobs.values())]

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

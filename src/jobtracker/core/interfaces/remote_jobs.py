"""RemoteJobsPort: the job-control surface of the remote worker.

The tracker relies on a single status-query primitive (`get_job_status`) for
every lifecycle decision; the other operations create, cancel and enumerate
jobs. Adapters translate transport failures into RemoteJobsError.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from jobtracker.core.models.job import JobKind, JobRecord


class RemoteJobsPort(ABC):
    async def __aenter__(self) -> "RemoteJobsPort":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        """Release transport resources (no-op by default)."""
        return None

    @abstractmethod
    async def start_job(self, kind: JobKind, params: Dict[str, Any]) -> str:
        """Create a job for the given operation kind and return its id."""
        raise NotImplementedError

    @abstractmethod
    async def get_job_status(self, job_id: str) -> Optional[JobRecord]:
        """Return the current JobRecord or None when the id is unknown."""
        raise NotImplementedError

    @abstractmethod
    async def cancel_job(self, job_id: str) -> bool:
        """Request cancellation; True when the remote acknowledged it."""
        raise NotImplementedError

    @abstractmethod
    async def list_jobs(self) -> List[JobRecord]:
        """Enumerate jobs known to the remote worker (startup reconciliation)."""
        raise NotImplementedError

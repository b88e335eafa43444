"""Test doubles shared across the suite."""

import asyncio
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Union

from jobtracker.core.interfaces.remote_jobs import RemoteJobsPort
from jobtracker.core.models.job import JobKind, JobRecord, JobState

Scripted = Union[JobRecord, Exception, None]


def record(job_id: str, state: Any = "Running", **fields: Any) -> JobRecord:
    """Build a JobRecord; `state` accepts the wire shape (e.g. {"Failed": "x"})."""
    if not isinstance(state, JobState):
        state = JobState.model_validate(state)
    fields.setdefault("kind", JobKind.account_close)
    return JobRecord(id=job_id, state=state, **fields)


class FakeRemoteJobs(RemoteJobsPort):
    """Scripted remote worker.

    `script(job_id, *responses)` queues status responses for a job; each poll
    consumes one, the last one repeats. A response may be a JobRecord, None
    (unknown job) or an exception to raise. Unscripted ids are unknown.
    """

    def __init__(self) -> None:
        self.scripts: Dict[str, List[Scripted]] = {}
        self.status_calls: Dict[str, int] = defaultdict(int)
        self.started: List[tuple] = []
        self.cancel_calls: List[str] = []
        self.cancel_ack = True
        self.listing: List[JobRecord] = []
        self.list_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.fail_when: Callable[[Dict[str, Any]], bool] = lambda params: bool(params.get("fail"))
        self.launch_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.entered = False
        self.closed = False
        self._counter = 0

    def script(self, job_id: str, *responses: Scripted) -> None:
        self.scripts[job_id] = list(responses)

    async def __aenter__(self):
        self.entered = True
        return self

    async def close(self) -> None:
        self.closed = True

    async def start_job(self, kind: JobKind, params: Dict[str, Any]) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.launch_delay:
                await asyncio.sleep(self.launch_delay)
            if self.start_error is not None:
                raise self.start_error
            if self.fail_when(params):
                raise RuntimeError("remote rejected the request")
            self._counter += 1
            job_id = f"job-{self._counter}"
            self.started.append((job_id, kind, dict(params)))
            return job_id
        finally:
            self.in_flight -= 1

    async def get_job_status(self, job_id: str) -> Optional[JobRecord]:
        self.status_calls[job_id] += 1
        script = self.scripts.get(job_id)
        if not script:
            return None
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def cancel_job(self, job_id: str) -> bool:
        self.cancel_calls.append(job_id)
        return self.cancel_ack

    async def list_jobs(self) -> List[JobRecord]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.listing)


class RecordingObserver:
    """Collects every lifecycle event it receives."""

    def __init__(self) -> None:
        self.registered: List[JobRecord] = []
        self.updates: List[JobRecord] = []
        self.completions = []
        self.lost: List[str] = []

    async def on_job_registered(self, record: JobRecord) -> None:
        self.registered.append(record)

    async def on_job_updated(self, record: JobRecord) -> None:
        self.updates.append(record)

    async def on_job_completed(self, completion) -> None:
        self.completions.append(completion)

    async def on_job_lost(self, job_id: str) -> None:
        self.lost.append(job_id)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)

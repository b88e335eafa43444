"""Observer protocol for job lifecycle events.

The PollingScheduler notifies observers after it has applied a poll result to
the active table and the history. Observers decouple side effects (consumer
subscriptions, logging, batch bookkeeping) from the polling loop itself.
"""

from typing import Protocol

from jobtracker.core.models.job import JobCompletion, JobRecord


class JobEventObserver(Protocol):
    """Observer protocol for job lifecycle events.

    Implementations can react to:
    - on_job_registered: a polling loop was attached to a job id
    - on_job_updated: a poll produced a fresh record (every tick)
    - on_job_completed: the job reached a definite terminal outcome (once)
    - on_job_lost: the remote worker no longer knows the job id

    Observers are called from many polling tasks and must not block.
    Exceptions raised by an observer are logged and swallowed by the caller.
    """

    async def on_job_registered(self, record: JobRecord) -> None:
        ...

    async def on_job_updated(self, record: JobRecord) -> None:
        ...

    async def on_job_completed(self, completion: JobCompletion) -> None:
        ...

    async def on_job_lost(self, job_id: str) -> None:
        ...

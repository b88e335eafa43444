import asyncio
from typing import Dict, Iterable

from jobtracker.core.managers.polling_scheduler import PollingScheduler
from jobtracker.core.settings import logger


class CancellationManager:
    """Consumer-facing cancellation; delegates to PollingScheduler.cancel."""

    def __init__(self, scheduler: PollingScheduler):
        self._scheduler = scheduler

    async def cancel(self, job_id: str) -> bool:
        """True when the remote acknowledged; False (no-op) for unknown ids."""
        return await self._scheduler.cancel(job_id)

    async def cancel_many(self, job_ids: Iterable[str]) -> Dict[str, bool]:
        job_ids = list(job_ids)
        outcomes = await asyncio.gather(*(self.cancel(job_id) for job_id in job_ids))
        result = dict(zip(job_ids, outcomes))
        logger.info(f"[cancel] cancelled {sum(outcomes)}/{len(job_ids)} job(s)")
        return result

"""Concrete observers for job lifecycle events.

This module provides:
- SubscriptionHub: per-job, per-batch and global completion subscriptions
- LoggingObserver: lifecycle events to the log
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from jobtracker.core.models.job import JobCompletion, JobRecord


logger = logging.getLogger(__name__)

CompletionCallback = Callable[[JobCompletion], Union[None, Awaitable[None]]]
BatchCallback = Callable[[str, List[Optional[JobCompletion]]], Union[None, Awaitable[None]]]


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


@dataclass
class _BatchWatch:
    job_ids: List[str]
    callback: BatchCallback
    pending: Set[str] = field(default_factory=set)


class SubscriptionHub:
    """Fans completion notifications out to consumer callbacks.

    - `subscribe(job_id, cb)` fires once with that job's JobCompletion.
    - `subscribe_batch(batch_id, job_ids, cb)` fires once, after every job of
      the batch finished or was lost, with completions in `job_ids` order
      (None for lost jobs).
    - `subscribe_all(cb)` fires for every completion.

    Outcomes are remembered, so subscribing after a job already finished still
    fires (immediately). At most `retain` outcomes are kept, oldest dropped
    first. Callbacks may be sync or async; a failing callback is
    logged and does not affect other subscribers.
    """

    def __init__(self, retain: int = 100) -> None:
        self._retain = retain
        self._per_job: Dict[str, List[CompletionCallback]] = {}
        self._batches: Dict[str, _BatchWatch] = {}
        self._global: List[CompletionCallback] = []
        self._outcomes: Dict[str, Optional[JobCompletion]] = {}

    # ---------------- Subscription -----------------
    async def subscribe(self, job_id: str, callback: CompletionCallback) -> Callable[[], None]:
        if job_id in self._outcomes:
            completion = self._outcomes[job_id]
            if completion is not None:
                await self._safe(callback, completion)
            return lambda: None
        self._per_job.setdefault(job_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._per_job.get(job_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def subscribe_batch(
        self, batch_id: str, job_ids: Iterable[str], callback: BatchCallback
    ) -> Callable[[], None]:
        job_ids = list(job_ids)
        watch = _BatchWatch(
            job_ids=job_ids,
            callback=callback,
            pending={job_id for job_id in job_ids if job_id not in self._outcomes},
        )
        if not watch.pending:
            await self._fire_batch(batch_id, watch)
            return lambda: None
        self._batches[batch_id] = watch

        def unsubscribe() -> None:
            self._batches.pop(batch_id, None)

        return unsubscribe

    def subscribe_all(self, callback: CompletionCallback) -> Callable[[], None]:
        self._global.append(callback)

        def unsubscribe() -> None:
            if callback in self._global:
                self._global.remove(callback)

        return unsubscribe

    def outcome(self, job_id: str) -> Optional[JobCompletion]:
        return self._outcomes.get(job_id)

    def forget(self, job_id: str) -> None:
        self._outcomes.pop(job_id, None)

    # ---------------- JobEventObserver -----------------
    async def on_job_registered(self, record: JobRecord) -> None:
        # a registered id (e.g. a lost job seen again) starts a fresh lifecycle
        self._outcomes.pop(record.id, None)

    async def on_job_updated(self, record: JobRecord) -> None:
        pass

    async def on_job_completed(self, completion: JobCompletion) -> None:
        self._remember(completion.job_id, completion)
        for callback in self._per_job.pop(completion.job_id, []):
            await self._safe(callback, completion)
        for callback in list(self._global):
            await self._safe(callback, completion)
        await self._settle_batches(completion.job_id)

    async def on_job_lost(self, job_id: str) -> None:
        self._remember(job_id, None)
        self._per_job.pop(job_id, None)
        await self._settle_batches(job_id)

    # ---------------- Internals -----------------
    def _remember(self, job_id: str, completion: Optional[JobCompletion]) -> None:
        self._outcomes.pop(job_id, None)
        self._outcomes[job_id] = completion
        while len(self._outcomes) > self._retain:
            self._outcomes.pop(next(iter(self._outcomes)))

    async def _settle_batches(self, job_id: str) -> None:
        for batch_id, watch in list(self._batches.items()):
            if job_id not in watch.pending:
                continue
            watch.pending.discard(job_id)
            if not watch.pending:
                del self._batches[batch_id]
                await self._fire_batch(batch_id, watch)

    async def _fire_batch(self, batch_id: str, watch: _BatchWatch) -> None:
        completions = [self._outcomes.get(job_id) for job_id in watch.job_ids]
        logger.debug(f"[observer:batch] batch complete batch_id={batch_id} jobs={len(completions)}")
        await self._safe(watch.callback, batch_id, completions)

    async def _safe(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            await _invoke(callback, *args)
        except Exception as exc:
            logger.warning(f"[observer:subscriber] callback failed error={exc}")


class LoggingObserver:
    """Writes lifecycle events to the log; terminal outcomes at INFO."""

    async def on_job_registered(self, record: JobRecord) -> None:
        logger.debug(f"[observer:log] registered job_id={record.id} kind={record.kind}")

    async def on_job_updated(self, record: JobRecord) -> None:
        logger.debug(
            f"[observer:log] update job_id={record.id} state={record.state} progress={record.progress:.0f}"
        )

    async def on_job_completed(self, completion: JobCompletion) -> None:
        if completion.reason:
            logger.info(
                f"[observer:log] job_id={completion.job_id} finished state={completion.state} "
                f"reason={completion.reason}"
            )
        else:
            logger.info(f"[observer:log] job_id={completion.job_id} finished state={completion.state}")

    async def on_job_lost(self, job_id: str) -> None:
        logger.warning(f"[observer:log] job_id={job_id} lost")

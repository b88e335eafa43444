"""Aggregate counts over history entries."""
from typing import Iterable, List, Optional, Sequence

from jobtracker.core.models.job import BatchSummary, JobKind, JobRecord, JobStats, StatusCode


def _count(records: Iterable[JobRecord]) -> dict[StatusCode, int]:
    counts = {code: 0 for code in StatusCode}
    for record in records:
        counts[record.status] += 1
    return counts


def compute_stats(entries: Iterable[JobRecord]) -> JobStats:
    """Count entries per state; success_rate is completed / total (0 when empty)."""
    entries = list(entries)
    counts = _count(entries)
    total = len(entries)
    return JobStats(
        total=total,
        completed=counts[StatusCode.completed],
        failed=counts[StatusCode.failed],
        cancelled=counts[StatusCode.cancelled],
        running=counts[StatusCode.running],
        pending=counts[StatusCode.pending],
        success_rate=counts[StatusCode.completed] / total if total else 0.0,
    )


def summarize_batch(
    batch_id: str,
    kind: JobKind,
    job_ids: Sequence[str],
    records: Sequence[Optional[JobRecord]],
    launch_errors: Optional[List[str]] = None,
) -> BatchSummary:
    """Summarize the member jobs of a batch.

    `records` is aligned with `job_ids`; a missing record (job evicted from the
    history or lost remotely) is counted as failed so the batch can complete.
    """
    known = [r for r in records if r is not None]
    counts = _count(known)
    missing = len(records) - len(known)
    return BatchSummary(
        batch_id=batch_id,
        kind=kind,
        job_ids=list(job_ids),
        total=len(job_ids),
        completed=counts[StatusCode.completed],
        failed=counts[StatusCode.failed] + missing,
        cancelled=counts[StatusCode.cancelled],
        running=counts[StatusCode.running],
        pending=counts[StatusCode.pending],
        launch_errors=list(launch_errors or []),
    )

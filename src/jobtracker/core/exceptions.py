from typing import Optional

from jobtracker.core.models.problem import ProblemResponse


class RemoteJobsError(Exception):
    """Transport-level failure talking to the remote worker.

    Raised by RemoteJobsPort adapters; carries a problem body so the web
    adapter can surface the upstream condition unchanged.
    """
    def __init__(self, response: ProblemResponse):
        self.response = response
        super().__init__(f"{response.title}: {response.detail}")

    @property
    def status(self) -> int:
        return self.response.status


# Domain-specific job tracking exceptions

class JobTrackerError(Exception):
    """Base exception for job tracking failures.

    Attributes:
        message: Human-readable error description
        diagnostic: Technical diagnostic information for debugging
        job_id: Optional job identifier
    """
    def __init__(
        self,
        message: str,
        diagnostic: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        self.message = message
        self.diagnostic = diagnostic
        self.job_id = job_id
        super().__init__(message)


class LaunchError(JobTrackerError):
    """Raised when a job could not be created on the remote worker.

    Covers an unreachable transport as well as a remote rejection (for example
    missing prerequisite configuration). Always surfaced to the caller.

    Attributes:
        kind: Operation kind that was being launched
        upstream_status: Status reported by the transport (if applicable)
    """
    def __init__(
        self,
        kind: str,
        message: str,
        upstream_status: Optional[int] = None,
        diagnostic: Optional[str] = None,
    ):
        self.kind = kind
        self.upstream_status = upstream_status
        super().__init__(message=message, diagnostic=diagnostic)


class PollError(JobTrackerError):
    """A status query failed. Transient: logged and retried on the next tick."""
    def __init__(self, job_id: str, cause: Exception):
        self.cause = cause
        super().__init__(
            message=f"Status query failed for job {job_id}: {cause}",
            diagnostic=type(cause).__name__,
            job_id=job_id,
        )


class RemoteFailure(JobTrackerError):
    """The remote worker reported `Failed{reason}`; reason is kept verbatim."""
    def __init__(self, job_id: str, reason: str):
        self.reason = reason
        super().__init__(message=reason, job_id=job_id)


class ParseError(JobTrackerError):
    """A Completed job's result never became parseable within the wait window.

    Only raised when a result wait timeout is configured; without one the
    tracker keeps polling.

    Attributes:
        raw_result: The last raw payload observed
        waited_seconds: Time spent waiting since the first Completed poll
    """
    def __init__(self, job_id: str, raw_result: Optional[str], waited_seconds: float):
        self.raw_result = raw_result
        self.waited_seconds = waited_seconds
        message = f"Result for job {job_id} not parseable after {waited_seconds:.1f}s"
        super().__init__(message=message, diagnostic=(raw_result or "")[:200], job_id=job_id)

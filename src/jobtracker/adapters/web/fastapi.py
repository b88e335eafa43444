# jobtracker/adapters/web/fastapi.py
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import uuid

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from jobtracker.core.exceptions import LaunchError, RemoteJobsError
from jobtracker.core.interfaces.remote_jobs import RemoteJobsPort
from jobtracker.core.logging_config import correlation_id_var, correlation_scope
from jobtracker.core.managers.job_tracker import JobTracker
from jobtracker.core.models.job import JobKind
from jobtracker.core.models.problem import ProblemResponse


class StartJobRequest(BaseModel):
    kind: JobKind
    params: Dict[str, Any] = Field(default_factory=dict)


class StartBatchRequest(BaseModel):
    kind: JobKind
    requests: List[Dict[str, Any]] = Field(min_length=1)
    max_concurrent: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("maxConcurrent", "max_concurrent"),
    )


def _dump(model: Any) -> Any:
    return jsonable_encoder(model, by_alias=True)


# Driver adapter: depends on the core (JobTracker); the core does not know it.
def create_app(
    tracker_factory: Callable[[RemoteJobsPort], JobTracker],
    remote: RemoteJobsPort,
) -> FastAPI:
    """Create the FastAPI app.

    The remote adapter and tracker are assembled by the composition root and
    passed in. The lifespan opens the remote transport, starts the tracker
    (history load + reconciliation) and stops every polling loop on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with remote as client:
            tracker = tracker_factory(client)
            app.state.tracker = tracker
            await tracker.start()
            try:
                yield
            finally:
                await tracker.stop()

    app = FastAPI(title="Job Tracker", lifespan=lifespan)

    def render_problem(problem: ProblemResponse, *, include_request_id: bool = False) -> JSONResponse:
        payload = jsonable_encoder(problem.model_dump(exclude_none=True))
        response = JSONResponse(status_code=problem.status, content=payload)
        if include_request_id and problem.additional and problem.additional.requestId:
            response.headers["X-Request-ID"] = problem.additional.requestId
        return response

    def build_problem(status: int, title: str, detail: str, request: Request) -> ProblemResponse:
        return ProblemResponse(title=title, status=status, detail=detail, instance=str(request.url))

    def not_found(request: Request, title: str, detail: str) -> JSONResponse:
        return render_problem(build_problem(404, title, detail, request))

    def tracker_of(request: Request) -> JobTracker:
        return request.app.state.tracker

    # Correlation ID middleware: per-request id (header override) exposed to logging
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        cid = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers["X-Request-ID"] = cid
        return response

    @app.exception_handler(LaunchError)
    async def launch_error_handler(request: Request, exc: LaunchError):
        status = exc.upstream_status if exc.upstream_status and exc.upstream_status >= 400 else 502
        problem = build_problem(status, "Job Launch Failed", exc.message, request)
        if status >= 500:
            problem = problem.with_request_id(correlation_id_var.get())
        return render_problem(problem, include_request_id=status >= 500)

    @app.exception_handler(RemoteJobsError)
    async def remote_error_handler(request: Request, exc: RemoteJobsError):
        include_request_id = exc.status >= 500
        problem = exc.response.model_copy()
        if include_request_id:
            problem = problem.with_request_id(correlation_id_var.get())
        return render_problem(problem, include_request_id=include_request_id)

    @app.get("/health")
    async def health(request: Request):
        tracker = tracker_of(request)
        return {
            "status": "ok" if tracker.started else "stopped",
            "activeJobs": len(tracker.get_active_jobs()),
            "polling": tracker.scheduler.polling_count,
        }

    # ---------------- Jobs -----------------
    @app.post("/jobs", status_code=201)
    async def start_job(body: StartJobRequest, request: Request):
        job_id = await tracker_of(request).start_job(body.kind, body.params)
        return JSONResponse(
            status_code=201,
            content={"jobId": job_id},
            headers={"Location": f"/jobs/{job_id}"},
        )

    @app.get("/jobs")
    async def list_active_jobs(request: Request):
        return {"jobs": _dump(tracker_of(request).get_active_jobs())}

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str, request: Request):
        record = await tracker_of(request).get_job(job_id)
        if record is None:
            return not_found(request, "Job Not Found", f"Job '{job_id}' not found")
        return _dump(record)

    @app.get("/jobs/{job_id}/result")
    async def get_job_result(job_id: str, request: Request):
        result = tracker_of(request).get_result(job_id)
        if result is None:
            return not_found(request, "Result Not Available", f"No result available for job '{job_id}'")
        return _dump(result)

    @app.post("/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str, request: Request):
        cancelled = await tracker_of(request).cancel_job(job_id)
        return {"jobId": job_id, "cancelled": cancelled}

    # ---------------- Batches -----------------
    @app.post("/batches", status_code=201)
    async def start_batch(body: StartBatchRequest, request: Request):
        batch = await tracker_of(request).start_batch(body.kind, body.requests, body.max_concurrent)
        return JSONResponse(
            status_code=201,
            content={
                "batchId": batch.batch_id,
                "jobIds": batch.job_ids,
                "launchErrors": batch.launch_errors,
            },
            headers={"Location": f"/batches/{batch.batch_id}"},
        )

    @app.get("/batches/{batch_id}")
    async def get_batch(batch_id: str, request: Request):
        summary = await tracker_of(request).get_batch(batch_id)
        if summary is None:
            return not_found(request, "Batch Not Found", f"Batch '{batch_id}' not found")
        return _dump(summary)

    @app.post("/batches/{batch_id}/cancel")
    async def cancel_batch(batch_id: str, request: Request):
        outcomes = await tracker_of(request).cancel_batch(batch_id)
        if outcomes is None:
            return not_found(request, "Batch Not Found", f"Batch '{batch_id}' not found")
        return {"batchId": batch_id, "cancelled": outcomes}

    # ---------------- History / stats -----------------
    @app.get("/history")
    async def get_history(
        request: Request,
        kind: Optional[JobKind] = None,
        recent_hours: Optional[float] = Query(default=None, gt=0),
    ):
        tracker = tracker_of(request)
        if recent_hours is not None:
            entries = await tracker.get_recent_history(timedelta(hours=recent_hours))
            if kind is not None:
                entries = [e for e in entries if e.kind == kind]
        else:
            entries = await tracker.get_history(kind)
        return {"entries": _dump(entries)}

    @app.delete("/history")
    async def clear_history(request: Request, terminal_only: bool = False):
        tracker = tracker_of(request)
        if terminal_only:
            removed = await tracker.clear_terminal_history()
            return {"removed": removed}
        await tracker.clear_history()
        return {"cleared": True}

    @app.delete("/history/{job_id}")
    async def remove_history_entry(job_id: str, request: Request):
        if not await tracker_of(request).remove_from_history(job_id):
            return not_found(request, "Job Not Found", f"No history entry for job '{job_id}'")
        return {"jobId": job_id, "removed": True}

    @app.get("/stats")
    async def get_stats(request: Request):
        stats = await tracker_of(request).get_stats()
        payload = _dump(stats)
        payload["successRateDisplay"] = stats.success_rate_display
        return payload

    return app

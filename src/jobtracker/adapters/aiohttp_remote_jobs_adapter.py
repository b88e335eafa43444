# jobtracker/adapters/aiohttp_remote_jobs_adapter.py
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from jobtracker.core.exceptions import RemoteJobsError
from jobtracker.core.interfaces.remote_jobs import RemoteJobsPort
from jobtracker.core.models.job import JobKind, JobRecord
from jobtracker.core.models.problem import ProblemResponse
from jobtracker.core.settings import logger


_MISSING = object()


class AioHttpRemoteJobsAdapter(RemoteJobsPort):
    """RemoteJobsPort over the remote worker's HTTP/JSON job API.

    Endpoints (relative to `base_url`):
        POST jobs               {"kind", "params"} -> {"id"} or {"jobId"}
        GET  jobs               -> [JobRecord] or {"jobs": [JobRecord]}
        GET  jobs/{id}          -> JobRecord (404 when unknown)
        POST jobs/{id}/cancel   -> {"cancelled": bool}
    """

    def __init__(self, base_url: str, timeout: float = 15.0):
        self._base = base_url if base_url.endswith("/") else base_url + "/"
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(total=timeout, sock_connect=min(timeout, 5.0))

    async def __aenter__(self):
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ---------------- RemoteJobsPort -----------------
    async def start_job(self, kind: JobKind, params: Dict[str, Any]) -> str:
        body = await self._request("POST", "jobs", json={"kind": str(kind), "params": params})
        job_id = (body.get("id") or body.get("jobId")) if isinstance(body, dict) else None
        if not job_id:
            raise RemoteJobsError(
                self._problem(502, "Invalid Response Content", "The remote worker returned no job id.")
            )
        return str(job_id)

    async def get_job_status(self, job_id: str) -> Optional[JobRecord]:
        body = await self._request("GET", f"jobs/{job_id}", not_found=None)
        if body is None:
            return None
        try:
            return JobRecord.model_validate(body)
        except ValidationError as exc:
            logger.error(f"Invalid job record from remote worker job_id={job_id}: {exc}")
            raise RemoteJobsError(
                self._problem(502, "Invalid Response Content", f"Malformed job record for '{job_id}'.")
            )

    async def cancel_job(self, job_id: str) -> bool:
        body = await self._request("POST", f"jobs/{job_id}/cancel", not_found=False)
        if isinstance(body, dict):
            return bool(body.get("cancelled", False))
        return bool(body)

    async def list_jobs(self) -> List[JobRecord]:
        body = await self._request("GET", "jobs")
        items = body.get("jobs", []) if isinstance(body, dict) else body or []
        records: List[JobRecord] = []
        for item in items:
            try:
                records.append(JobRecord.model_validate(item))
            except ValidationError as exc:
                logger.warning(f"Skipping malformed job record from remote listing: {exc.error_count()} errors")
        return records

    # ---------------- Transport -----------------
    def _problem(self, status: int, title: str, detail: str, url: Optional[str] = None) -> ProblemResponse:
        return ProblemResponse(type="about:blank", title=title, status=status, detail=detail, instance=url)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        not_found: Any = _MISSING,
    ) -> Any:
        """
        Send a request and decode the JSON body with remote-worker error handling.

        Translates HTTP/network errors into RemoteJobsError. When `not_found` is
        given, a 404 returns it instead of raising.
        """
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")

        url = self._base + path
        try:
            async with self._session.request(method, url, json=json) as response:
                if response.status == 404 and not_found is not _MISSING:
                    return not_found
                response.raise_for_status()
                try:
                    return await response.json(content_type=None)
                except ValueError:
                    response_text = await response.text()
                    logger.error(
                        "Invalid JSON response from remote worker. URL: %s, Content: %s",
                        url,
                        response_text[:500],
                    )
                    raise RemoteJobsError(
                        self._problem(
                            502,
                            "Invalid Response Content",
                            f"The response from the remote worker was not valid JSON: '{response_text[:100]}'",
                            url,
                        )
                    )

        except asyncio.TimeoutError:
            logger.error("Timeout when requesting remote worker. URL: %s", url)
            raise RemoteJobsError(
                self._problem(504, "Upstream Timeout", "The request to the remote worker timed out.", url)
            )

        except aiohttp.ClientResponseError as client_response_error:
            logger.error(
                "HTTP error when requesting remote worker. URL: %s, Status: %s, Error: %s",
                url,
                client_response_error.status,
                str(client_response_error),
            )
            raise RemoteJobsError(
                self._problem(
                    client_response_error.status,
                    "Upstream HTTP Error",
                    f"The remote worker returned an HTTP error: {client_response_error.status} "
                    f"{client_response_error.message}",
                    url,
                )
            )

        except aiohttp.ClientError as client_error:
            logger.error(
                "Connection error when requesting remote worker. URL: %s, Error: %s",
                url,
                str(client_error),
            )
            raise RemoteJobsError(
                self._problem(
                    502, "Upstream Connection Error", "There was a connection error with the remote worker.", url
                )
            )

"""Client for submitting star video jobs and polling them to completion."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx

from stars_video.errors import PollingError, PollingTimeout

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")

StatusCallback = Callable[[Dict[str, Any]], None]


class JobStatusPoller:
    """Polls ``GET /api/github/jobs/{id}`` on a fixed interval.

    Transport errors (connection refused, timeouts) on a single poll are
    logged and the loop keeps going. An error response from the server
    (e.g. 404 for an unknown job) stops the loop and raises ``PollingError``.

    Usage:
        async with JobStatusPoller("http://localhost:3000") as poller:
            job_id = await poller.submit("octocat", "Hello-World", theme="light")
            record = await poller.wait(job_id)
    """

    def __init__(
        self,
        base_url: str,
        interval: float = 3.0,
        max_attempts: Optional[int] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.interval = interval
        self.max_attempts = max_attempts
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "JobStatusPoller":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(self, owner: str, repo: str, theme: str = "dark") -> str:
        """Start a job and return its ID."""
        response = await self._client.post(
            "/api/github/stars",
            json={"owner": owner, "repo": repo, "theme": theme},
        )
        if response.is_error:
            raise PollingError(_server_error(response), status_code=response.status_code)
        body = _json_body(response)
        if not body.get("jobId"):
            raise PollingError(f"Invalid response from server ({response.status_code})", status_code=response.status_code)
        return body["jobId"]

    async def fetch(self, job_id: str) -> Dict[str, Any]:
        """One status request. Raises ``PollingError`` on an error or non-JSON response."""
        response = await self._client.get(f"/api/github/jobs/{quote(job_id, safe='')}")
        if response.is_error:
            raise PollingError(_server_error(response), status_code=response.status_code)
        return _json_body(response)

    async def wait(self, job_id: str, on_update: Optional[StatusCallback] = None) -> Dict[str, Any]:
        """Poll until the job is completed or failed and return the final record."""
        attempts = 0
        while True:
            await asyncio.sleep(self.interval)
            attempts += 1

            try:
                record = await self.fetch(job_id)
            except httpx.TransportError as exc:
                logger.warning("Polling job %s failed (%s); retrying", job_id, exc)
            else:
                if on_update is not None:
                    on_update(record)
                if record.get("status") in TERMINAL_STATUSES:
                    return record

            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise PollingTimeout(f"Job {job_id} not finished after {attempts} polls")


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise PollingError(f"Invalid response from server ({response.status_code})", status_code=response.status_code)
    return body


def _server_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Server returned {response.status_code}"

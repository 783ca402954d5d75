"""
HTTP client for the conversion API.

Submits a manuscript and waits for the job to finish using the server's
long-poll support, bounded by a total deadline. A job that fails and a job
that simply takes too long raise different exceptions so callers can tell
them apart; neither is retried automatically.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import requests

from .models import JobStatus, JobStatusResponse


class ClientError(Exception):
    """Base exception for client-side failures."""


class SubmissionRejectedError(ClientError):
    """The server refused to create the job."""


class JobFailedError(ClientError):
    def __init__(self, status: JobStatusResponse) -> None:
        self.status = status
        super().__init__(f"Job {status.job_id} failed: {status.error}")


class JobTimeoutError(ClientError):
    def __init__(self, job_id: str, waited: float, last_status: Optional[JobStatusResponse]) -> None:
        self.job_id = job_id
        self.waited = waited
        self.last_status = last_status
        super().__init__(f"Job {job_id} did not finish within {waited:.0f}s")


class ConversionClient:
    """
    Thin client over ``POST /jobs`` and ``GET /jobs/{id}``.

    Attributes:
        base_url: API root, e.g. ``http://localhost:8000``
        session: Object with ``get``/``post`` methods (``requests.Session`` by default)
        poll_wait: Seconds each status request asks the server to long-poll
        poll_interval: Minimum spacing between status requests
    """

    def __init__(
        self,
        base_url: str,
        session=None,
        poll_wait: float = 10.0,
        poll_interval: float = 1.0,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.poll_wait = poll_wait
        self.poll_interval = poll_interval
        self.timeout = timeout

    def submit(
        self,
        content_text: str,
        mapping: Optional[Dict[str, Any]] = None,
        template_url: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {"contentText": content_text}
        if mapping:
            payload["mapping"] = mapping
        if template_url:
            payload["templateUrl"] = template_url

        response = self.session.post(f"{self.base_url}/jobs", json=payload, timeout=self.timeout)
        if response.status_code == 400:
            raise SubmissionRejectedError(response.json().get("detail", "rejected"))
        response.raise_for_status()
        return response.json()["jobId"]

    def status(self, job_id: str, wait: Optional[float] = None) -> JobStatusResponse:
        params = {"wait": wait} if wait else None
        response = self.session.get(
            f"{self.base_url}/jobs/{job_id}",
            params=params,
            timeout=self.timeout + (wait or 0),
        )
        if response.status_code not in (200, 404):
            response.raise_for_status()
        return JobStatusResponse.model_validate(response.json())

    def wait_for_result(self, job_id: str, max_wait: float = 300.0) -> JobStatusResponse:
        """
        Block until the job succeeds, fails or ``max_wait`` seconds pass.

        Raises:
            JobFailedError: The job failed (or is unknown to the server)
            JobTimeoutError: The job is still running after ``max_wait``
        """
        started = time.monotonic()
        last: Optional[JobStatusResponse] = None
        while True:
            remaining = max_wait - (time.monotonic() - started)
            if remaining <= 0:
                raise JobTimeoutError(job_id, max_wait, last)
            call_started = time.monotonic()
            last = self.status(job_id, wait=min(self.poll_wait, remaining))
            if last.status == JobStatus.SUCCEEDED:
                return last
            if last.status == JobStatus.FAILED:
                raise JobFailedError(last)
            # Servers without long-poll support answer immediately
            elapsed = time.monotonic() - call_started
            if elapsed < self.poll_interval:
                time.sleep(min(self.poll_interval - elapsed, max(remaining - elapsed, 0)))

    def convert(
        self,
        content_text: str,
        mapping: Optional[Dict[str, Any]] = None,
        template_url: Optional[str] = None,
        max_wait: float = 300.0,
    ) -> JobStatusResponse:
        job_id = self.submit(content_text, mapping=mapping, template_url=template_url)
        return self.wait_for_result(job_id, max_wait=max_wait)

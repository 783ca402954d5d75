"""
Job gateway and worker pool for manuscript conversion.

This module manages the end-to-end lifecycle of conversion jobs:
- Submission validation and job registration
- Dispatch of job ids to a FIFO thread pool
- Status reporting, including long-polling until a job finishes
- Redelivery of unfinished jobs after a restart

The JobManager class provides the core business logic for the API,
coordinating between user requests, the job store and the conversion worker.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .configuration import Settings
from .document_renderer import DocumentRenderer, TemplateFetcher
from .errors import JobValidationError
from .job_store import JobStore
from .models import JobDetail, JobStatusResponse, JobSummary
from .print_renderer import PrintRenderer
from .storage import ArtifactStore, build_artifact_store
from .worker import ConversionWorker

logger = logging.getLogger(__name__)


class JobManager:
    """
    Central coordinator for conversion jobs.

    This class orchestrates all aspects of job processing:
    - Validating submissions and creating jobs
    - Running the conversion worker asynchronously
    - Reporting job state to pollers

    Thread Safety:
        All job state lives in the JobStore, which serialises writes. The
        manager itself only holds immutable collaborators and the executor.

    Attributes:
        store: Durable job records
        artifacts: Storage for produced files
        max_wait_seconds: Upper bound for a single long-poll
    """

    def __init__(
        self,
        store: JobStore,
        worker: ConversionWorker,
        artifacts: ArtifactStore,
        max_workers: int = 1,
        max_wait_seconds: float = 30.0,
        max_waiters: int = 32,
    ) -> None:
        """
        Initialize the job manager.

        Args:
            store: Job record store
            worker: Pipeline run for each dispatched job
            artifacts: Artifact store used to resolve result URLs
            max_workers: Number of concurrent conversions (default: 1)
            max_wait_seconds: Cap on the ``wait`` argument of ``status``
            max_waiters: Number of long-polling status calls served at once;
                further waiters queue behind them

        Note:
            Every conversion launches its own headless browser; size
            max_workers to the available memory.
        """
        self.store = store
        self.worker = worker
        self.artifacts = artifacts
        self.max_wait_seconds = max_wait_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="conversion")
        self._wait_executor = ThreadPoolExecutor(max_workers=max_waiters, thread_name_prefix="long-poll")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        document_renderer: Optional[DocumentRenderer] = None,
        print_renderer: Optional[PrintRenderer] = None,
        artifacts: Optional[ArtifactStore] = None,
    ) -> "JobManager":
        """Build a manager and its collaborators from configuration."""
        store = JobStore.open(
            settings.db_path,
            keep_completed=settings.keep_completed,
            keep_failed=settings.keep_failed,
        )
        artifacts = artifacts or build_artifact_store(settings)
        document_renderer = document_renderer or DocumentRenderer(
            TemplateFetcher(timeout=settings.template_timeout, max_bytes=settings.template_max_bytes)
        )
        print_renderer = print_renderer or PrintRenderer(
            no_sandbox=settings.pdf_no_sandbox,
            launch_timeout_ms=settings.pdf_launch_timeout_ms,
            load_timeout_ms=settings.pdf_load_timeout_ms,
            render_timeout_ms=settings.pdf_render_timeout_ms,
        )
        worker = ConversionWorker(store, document_renderer, print_renderer, artifacts)
        return cls(
            store,
            worker,
            artifacts,
            max_workers=settings.max_workers,
            max_wait_seconds=settings.max_wait_seconds,
            max_waiters=settings.max_waiters,
        )

    def start(self) -> int:
        """
        Redeliver jobs left unfinished by a previous process.

        Jobs that were processing when the process stopped go back to the
        queue; every queued job is dispatched again, oldest first.

        Returns:
            Number of jobs dispatched
        """
        unfinished = self.store.list_unfinished()
        for record in unfinished:
            self.store.requeue(record.id)
            self._dispatch(record.id)
        if unfinished:
            logger.info(f"Redelivered {len(unfinished)} unfinished job(s)")
        return len(unfinished)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._wait_executor.shutdown(wait=wait)

    def submit(
        self,
        content_text: Any,
        mapping: Optional[Dict[str, Any]] = None,
        template_url: Optional[str] = None,
    ) -> str:
        """
        Validate and enqueue a conversion job.

        Args:
            content_text: Manuscript text; must contain non-whitespace
            mapping: Extra template bindings
            template_url: Optional http(s) URL of a DOCX template

        Returns:
            The new job id

        Raises:
            JobValidationError: If the submission is rejected (no job is created)

        Note:
            The job is immediately submitted to the executor and will begin
            processing as soon as a worker is available.
        """
        if not isinstance(content_text, str) or not content_text.strip():
            raise JobValidationError("contentText required", field="contentText")
        if mapping is not None and not isinstance(mapping, dict):
            raise JobValidationError("mapping must be an object", field="mapping")
        if template_url:
            parsed = urlparse(template_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise JobValidationError("templateUrl must be an http(s) URL", field="templateUrl")

        job_id = self.store.enqueue(content_text, mapping=mapping or {}, template_url=template_url or None)
        self._dispatch(job_id)
        logger.info(f"Job {job_id} queued")
        return job_id

    def _dispatch(self, job_id: str) -> None:
        self._executor.submit(self.worker.process, job_id)

    def status(self, job_id: str, wait: Optional[float] = None) -> JobStatusResponse:
        """
        Report a job's state, optionally waiting for it to finish.

        Args:
            job_id: The job to report
            wait: Seconds to block until the job is terminal (capped at
                max_wait_seconds); None or 0 returns immediately

        Returns:
            The status response; unknown ids yield a not-found response
            instead of an exception
        """
        if wait and wait > 0:
            record = self.store.wait_for_terminal(job_id, min(wait, self.max_wait_seconds))
        else:
            record = self.store.get(job_id)
        if record is None:
            return JobStatusResponse.not_found(job_id)
        return record.to_status(self.artifacts.url_for)

    def status_later(self, job_id: str, wait: float) -> Future:
        """Run a long-polling ``status`` call on the dedicated waiter pool."""
        return self._wait_executor.submit(self.status, job_id, wait)

    def get_job(self, job_id: str) -> Optional[JobDetail]:
        """
        Get detailed information about a specific job.

        Returns:
            JobDetail if found, None otherwise
        """
        record = self.store.get(job_id)
        return record.to_detail(self.artifacts.url_for) if record else None

    def list_jobs(self) -> list[JobSummary]:
        """Get all retained jobs, newest first."""
        return [record.to_summary() for record in self.store.list_jobs()]

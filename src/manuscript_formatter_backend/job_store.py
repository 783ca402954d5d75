"""
Durable, thread-safe job state for conversion jobs.

This module owns every read and write of a job record:
- Job creation in the ``queued`` state
- The ``queued -> processing -> succeeded | failed`` state machine
- Monotonic progress updates and lifecycle event logging
- Bounded retention of terminal records
- Blocking waits for a job to reach a terminal state

Records live in SQLite (see ``database.JobDatabase``). The work queue itself
is not here: the job manager dispatches ids to its worker pool, so the store
only has to guarantee that each delivery claims a job at most once.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Condition, Lock
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from .database import JobDatabase
from .errors import InvalidTransitionError, JobNotFoundError
from .models import JobDetail, JobEvent, JobStatus, JobStatusResponse, JobSummary

logger = logging.getLogger(__name__)

# Maps an artifact location to a URL a client can fetch
UrlResolver = Callable[[str], str]

_ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class JobRecord:
    """
    Internal representation of a conversion job with full state.

    Attributes:
        id: Unique job identifier (hex UUID)
        status: Current state machine position
        progress: 0-100, only meaningful while processing
        content_text: Manuscript text to convert
        mapping: Extra template bindings (field name -> value)
        template_url: Optional URL of a DOCX template
        created_at: Job creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        docx_location: Artifact store location of the DOCX, set on success
        pdf_location: Artifact store location of the PDF, set on success
        error: Error message if the job failed
        events: Chronological list of job lifecycle events
    """

    id: str
    status: JobStatus
    content_text: str
    created_at: datetime
    updated_at: datetime
    progress: int = 0
    mapping: Dict[str, Any] = field(default_factory=dict)
    template_url: Optional[str] = None
    docx_location: Optional[str] = None
    pdf_location: Optional[str] = None
    error: Optional[str] = None
    events: List[JobEvent] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobRecord":
        return cls(
            id=row["id"],
            status=JobStatus(row["status"]),
            progress=row["progress"],
            content_text=row["content_text"],
            mapping=row["mapping"],
            template_url=row["template_url"],
            docx_location=row["docx_location"],
            pdf_location=row["pdf_location"],
            error=row["error"],
            events=[JobEvent(**event) for event in row["events"]],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "content_text": self.content_text,
            "mapping": self.mapping,
            "template_url": self.template_url,
            "docx_location": self.docx_location,
            "pdf_location": self.pdf_location,
            "error": self.error,
            "events": [event.model_dump() for event in self.events],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_summary(self) -> JobSummary:
        """
        Convert to a lightweight summary representation.

        Returns:
            JobSummary with essential fields for list views
        """
        return JobSummary(
            id=self.id,
            status=self.status,
            progress=self.progress,
            created_at=self.created_at,
            updated_at=self.updated_at,
            has_template=bool(self.template_url),
        )

    def to_detail(self, resolve_url: UrlResolver) -> JobDetail:
        """
        Convert to a detailed representation with full information.

        Args:
            resolve_url: Turns artifact locations into client URLs

        Returns:
            JobDetail with mapping, events and result URLs
        """
        summary = self.to_summary()
        status = self.to_status(resolve_url)
        return JobDetail(
            **summary.model_dump(),
            mapping=self.mapping,
            template_url=self.template_url,
            content_length=len(self.content_text),
            docx_url=status.docx_url,
            pdf_url=status.pdf_url,
            events=self.events,
            error=self.error,
        )

    def to_status(self, resolve_url: UrlResolver) -> JobStatusResponse:
        """
        Convert to the polling response.

        Result URLs are only populated once the job has succeeded, so a client
        can never be pointed at an artifact that is still being written.
        """
        if self.status == JobStatus.SUCCEEDED:
            return JobStatusResponse(
                job_id=self.id,
                status=self.status,
                progress=100,
                docx_url=resolve_url(self.docx_location) if self.docx_location else None,
                pdf_url=resolve_url(self.pdf_location) if self.pdf_location else None,
            )
        if self.status == JobStatus.FAILED:
            return JobStatusResponse(job_id=self.id, status=self.status, progress=0, error=self.error or "failed")
        return JobStatusResponse(job_id=self.id, status=self.status, progress=self.progress)


class JobStore:
    """
    Serialised access to job records.

    Thread Safety:
        A single lock guards every read-modify-write cycle so concurrent
        progress writes never lose updates. A condition variable sharing the
        lock wakes threads waiting for a job to finish.

    Attributes:
        keep_completed: Number of succeeded records retained
        keep_failed: Number of failed records retained
    """

    def __init__(
        self,
        database: JobDatabase,
        keep_completed: int = 100,
        keep_failed: int = 100,
    ) -> None:
        self._db = database
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self._lock = Lock()
        self._changed = Condition(self._lock)

    @classmethod
    def open(cls, db_path: Path, keep_completed: int = 100, keep_failed: int = 100) -> "JobStore":
        return cls(JobDatabase(db_path), keep_completed=keep_completed, keep_failed=keep_failed)

    def enqueue(
        self,
        content_text: str,
        mapping: Optional[Dict[str, Any]] = None,
        template_url: Optional[str] = None,
    ) -> str:
        """
        Create a job in the ``queued`` state.

        Returns:
            The new job's id
        """
        now = datetime.utcnow()
        record = JobRecord(
            id=uuid4().hex,
            status=JobStatus.QUEUED,
            content_text=content_text,
            mapping=dict(mapping or {}),
            template_url=template_url,
            created_at=now,
            updated_at=now,
            events=[JobEvent(timestamp=now, message="Job registered and awaiting execution.")],
        )
        with self._changed:
            self._db.save_job(record.to_row())
            self._changed.notify_all()
        return record.id

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            row = self._db.get_job(job_id)
        return JobRecord.from_row(row) if row else None

    def list_jobs(self) -> List[JobRecord]:
        """Get all jobs sorted by creation time (newest first)."""
        with self._lock:
            rows = self._db.list_jobs()
        return [JobRecord.from_row(row) for row in rows]

    def list_unfinished(self) -> List[JobRecord]:
        """Get queued and processing jobs, oldest first."""
        with self._lock:
            rows = self._db.list_jobs(statuses=[JobStatus.QUEUED.value, JobStatus.PROCESSING.value])
        return [JobRecord.from_row(row) for row in reversed(rows)]

    def claim(self, job_id: str) -> Optional[JobRecord]:
        """
        Move a queued job to ``processing`` for exactly one worker attempt.

        Returns:
            The claimed record, or None if the job is gone or not queued
        """
        with self._changed:
            row = self._db.get_job(job_id)
            if row is None or row["status"] != JobStatus.QUEUED.value:
                return None
            record = JobRecord.from_row(row)
            self._write(record, status=JobStatus.PROCESSING, progress=0, event="Processing started.")
            return record

    def update_progress(self, job_id: str, progress: int, event: Optional[str] = None) -> None:
        """
        Raise the progress of a processing job; lower values are ignored.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is not processing
        """
        with self._changed:
            record = self._load(job_id)
            if record.status != JobStatus.PROCESSING:
                raise InvalidTransitionError(job_id, record.status.value, "progress update")
            clamped = max(record.progress, min(int(progress), 99))
            self._write(record, progress=clamped, event=event)

    def mark_succeeded(self, job_id: str, docx_location: str, pdf_location: str) -> None:
        with self._changed:
            record = self._load(job_id)
            self._check_transition(record, JobStatus.SUCCEEDED)
            self._write(
                record,
                status=JobStatus.SUCCEEDED,
                progress=100,
                docx_location=docx_location,
                pdf_location=pdf_location,
                error=None,
                event="Conversion completed.",
            )
            self._apply_retention(JobStatus.SUCCEEDED, self.keep_completed)

    def mark_failed(self, job_id: str, error: str) -> None:
        with self._changed:
            record = self._load(job_id)
            self._check_transition(record, JobStatus.FAILED)
            self._write(
                record,
                status=JobStatus.FAILED,
                docx_location=None,
                pdf_location=None,
                error=error,
                event=f"Conversion failed: {error}",
            )
            self._apply_retention(JobStatus.FAILED, self.keep_failed)

    def requeue(self, job_id: str) -> None:
        """
        Return an interrupted ``processing`` job to the queue.

        Only used when recovering after a restart, so a job whose worker died
        is delivered again instead of staying stuck.
        """
        with self._changed:
            record = self._load(job_id)
            if record.status != JobStatus.PROCESSING:
                return
            self._write(record, status=JobStatus.QUEUED, progress=0, event="Requeued after interrupted processing.")

    def wait_for_terminal(self, job_id: str, timeout: float) -> Optional[JobRecord]:
        """
        Block until the job succeeds or fails, or the timeout elapses.

        Returns:
            The latest record (terminal or not), or None if the job is unknown
        """
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._changed:
            while True:
                row = self._db.get_job(job_id)
                if row is None:
                    return None
                record = JobRecord.from_row(row)
                remaining = deadline - time.monotonic()
                if record.status.is_terminal or remaining <= 0:
                    return record
                self._changed.wait(remaining)

    def _load(self, job_id: str) -> JobRecord:
        row = self._db.get_job(job_id)
        if row is None:
            raise JobNotFoundError(job_id)
        return JobRecord.from_row(row)

    @staticmethod
    def _check_transition(record: JobRecord, target: JobStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[record.status]:
            raise InvalidTransitionError(record.id, record.status.value, target.value)

    def _write(self, record: JobRecord, event: Optional[str] = None, **fields: Any) -> None:
        # Caller holds the lock
        now = datetime.utcnow()
        columns: Dict[str, Any] = {}
        for key, value in fields.items():
            setattr(record, key, value)
            columns[key] = value.value if isinstance(value, JobStatus) else value
        if event:
            record.events.append(JobEvent(timestamp=now, message=event))
            columns["events"] = [e.model_dump() for e in record.events]
        record.updated_at = now
        columns["updated_at"] = now
        self._db.update_job(record.id, **columns)
        self._changed.notify_all()

    def _apply_retention(self, status: JobStatus, keep: int) -> None:
        pruned = self._db.prune_jobs(status.value, keep)
        if pruned:
            logger.info(f"Pruned {len(pruned)} {status.value} job record(s) beyond retention of {keep}")

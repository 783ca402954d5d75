from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

NOT_FOUND_ERROR = "not_found"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConvertRequest(CamelModel):
    # Content checks happen in JobManager.submit so that a bad body is a 400
    content_text: Optional[str] = None
    mapping: Optional[Dict[str, Any]] = None
    template_url: Optional[str] = None


class JobCreated(CamelModel):
    job_id: str


class JobStatusResponse(CamelModel):
    job_id: str
    status: JobStatus
    progress: int = 0
    docx_url: Optional[str] = None
    pdf_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def not_found(cls, job_id: str) -> "JobStatusResponse":
        return cls(job_id=job_id, status=JobStatus.FAILED, progress=0, error=NOT_FOUND_ERROR)

    @property
    def is_not_found(self) -> bool:
        return self.status == JobStatus.FAILED and self.error == NOT_FOUND_ERROR


class JobEvent(BaseModel):
    timestamp: datetime
    message: str


class JobSummary(CamelModel):
    id: str
    status: JobStatus
    progress: int
    created_at: datetime
    updated_at: datetime
    has_template: bool = False


class JobDetail(JobSummary):
    mapping: Dict[str, Any]
    template_url: Optional[str] = None
    content_length: int
    docx_url: Optional[str] = None
    pdf_url: Optional[str] = None
    events: List[JobEvent]
    error: Optional[str] = None


class UploadResponse(BaseModel):
    id: str
    url: str
    name: str
    size: int
    type: Optional[str] = None

"""
Exception hierarchy for the conversion pipeline.

Renderer errors are raised by the document and print renderers and caught at
the worker boundary, where their message becomes the job's ``error`` field.
Gateway errors are raised synchronously to the caller of ``JobManager``.
"""

from __future__ import annotations

from typing import Optional


class ConversionError(Exception):
    """Base exception for all conversion service errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class JobValidationError(ConversionError):
    """Raised when a submission is rejected before any job is created."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class JobNotFoundError(ConversionError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidTransitionError(ConversionError):
    """Raised when a job state change violates the job state machine."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")


class RenderError(ConversionError):
    """Raised when DOCX serialisation fails unexpectedly."""


class TemplateFetchError(RenderError):
    """Raised when the template cannot be downloaded."""


class TemplateRenderError(RenderError):
    """Raised when the template cannot be opened or filled in."""


class PdfRenderError(ConversionError):
    """Raised for any failure of the browser print pipeline."""


class StorageError(ConversionError):
    """Raised when an artifact cannot be written, read or signed."""

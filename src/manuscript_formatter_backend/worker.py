"""
Per-job conversion pipeline.

``ConversionWorker.process`` drives one claimed job through its stages:

1. Claim the job (``queued -> processing``)
2. Render the DOCX and store ``job-<id>.docx``
3. Render the PDF and store ``job-<id>.pdf``
4. Record both locations and mark the job succeeded

A failure at any stage marks the whole job failed with the stage's message.
``process`` never raises, so the worker pool keeps serving later jobs.
"""

from __future__ import annotations

import logging

from .document_renderer import DocumentRenderer
from .errors import ConversionError, PdfRenderError
from .job_store import JobStore
from .print_renderer import PrintRenderer
from .storage import ArtifactStore
from .utils import artifact_name

logger = logging.getLogger(__name__)

PROGRESS_DOCX_RENDERED = 40
PROGRESS_DOCX_STORED = 50
PROGRESS_PDF_RENDERED = 90


class ConversionWorker:
    def __init__(
        self,
        store: JobStore,
        document_renderer: DocumentRenderer,
        print_renderer: PrintRenderer,
        artifacts: ArtifactStore,
    ) -> None:
        self.store = store
        self.document_renderer = document_renderer
        self.print_renderer = print_renderer
        self.artifacts = artifacts

    def process(self, job_id: str) -> None:
        """
        Run the conversion pipeline for one job (runs in a worker thread).

        Args:
            job_id: The job to process; ignored unless it is still queued
        """
        record = self.store.claim(job_id)
        if record is None:
            logger.info(f"Job {job_id} is not queued; skipping delivery")
            return

        logger.info(f"Job {job_id} started")
        try:
            docx_bytes = self.document_renderer.render(
                record.content_text,
                mapping=record.mapping,
                template_url=record.template_url,
            )
            self.store.update_progress(job_id, PROGRESS_DOCX_RENDERED, event="DOCX rendered.")
            docx_location = self.artifacts.save(artifact_name(job_id, "docx"), docx_bytes)
            self.store.update_progress(job_id, PROGRESS_DOCX_STORED, event="DOCX stored.")

            pdf_bytes = self._render_pdf(record.content_text)
            self.store.update_progress(job_id, PROGRESS_PDF_RENDERED, event="PDF rendered.")
            pdf_location = self.artifacts.save(artifact_name(job_id, "pdf"), pdf_bytes)

            self.store.mark_succeeded(job_id, docx_location=docx_location, pdf_location=pdf_location)
            logger.info(f"Job {job_id} completed")
        except ConversionError as exc:
            logger.warning(f"Job {job_id} failed: {exc}")
            self._fail(job_id, str(exc))
        except Exception as exc:
            logger.exception(f"Job {job_id} failed with an unexpected error")
            self._fail(job_id, f"Unexpected error: {exc}")

    def _fail(self, job_id: str, message: str) -> None:
        try:
            self.store.mark_failed(job_id, message)
        except Exception:
            logger.exception(f"Could not record failure of job {job_id}")

    def _render_pdf(self, content_text: str) -> bytes:
        try:
            return self.print_renderer.render(content_text)
        except PdfRenderError:
            raise
        except Exception as exc:
            raise PdfRenderError(f"PDF rendering failed: {exc}", cause=exc) from exc

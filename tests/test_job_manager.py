"""
Tests for the job gateway and worker pool.

Tests cover:
- Submission validation
- End-to-end conversions through the worker pool
- Failure handling at each pipeline stage
- Concurrent submissions
- Redelivery of unfinished jobs on start
"""

import pytest

from conftest import FakePrintRenderer, docx_paragraph_texts, make_template
from manuscript_formatter_backend.document_renderer import DocumentRenderer
from manuscript_formatter_backend.errors import JobValidationError, PdfRenderError
from manuscript_formatter_backend.job_manager import JobManager
from manuscript_formatter_backend.job_store import JobStore
from manuscript_formatter_backend.models import JobStatus

TEMPLATE_URL = "https://journals.example.org/templates/article.docx"


def wait_for(manager, job_id):
    return manager.status(job_id, wait=10)


class TestSubmitValidation:
    """Tests for submissions rejected before a job is created."""

    @pytest.mark.parametrize("content", ["", "   ", "\n\n\t", None, 42])
    def test_rejects_missing_or_blank_content(self, manager, content):
        with pytest.raises(JobValidationError) as exc_info:
            manager.submit(content)
        assert exc_info.value.message == "contentText required"
        assert manager.list_jobs() == []

    def test_rejects_non_object_mapping(self, manager):
        with pytest.raises(JobValidationError):
            manager.submit("Body", mapping=["not", "a", "dict"])
        assert manager.list_jobs() == []

    @pytest.mark.parametrize("url", ["ftp://example.org/t.docx", "not a url", "file:///etc/passwd"])
    def test_rejects_non_http_template_url(self, manager, url):
        with pytest.raises(JobValidationError):
            manager.submit("Body", template_url=url)
        assert manager.list_jobs() == []


class TestConversion:
    """Tests for jobs running through the worker pool."""

    def test_plain_conversion_succeeds(self, manager, settings, print_renderer):
        job_id = manager.submit("Para one.\n\nPara two.")
        status = wait_for(manager, job_id)

        assert status.status == JobStatus.SUCCEEDED
        assert status.progress == 100
        assert status.docx_url == f"http://testserver/files/job-{job_id}.docx"
        assert status.pdf_url == f"http://testserver/files/job-{job_id}.pdf"
        assert status.error is None

        docx_path = settings.output_dir / f"job-{job_id}.docx"
        pdf_path = settings.output_dir / f"job-{job_id}.pdf"
        assert docx_paragraph_texts(docx_path.read_bytes()) == ["Para one.", "Para two."]
        assert b"/Type /Page" in pdf_path.read_bytes()
        assert print_renderer.calls == ["Para one.\n\nPara two."]

    def test_status_before_completion_has_no_urls(self, manager):
        """A job that is not finished never exposes artifact URLs."""
        manager.shutdown()
        job_id = manager.store.enqueue("Body")
        status = manager.status(job_id)
        assert status.status == JobStatus.QUEUED
        assert status.docx_url is None
        assert status.pdf_url is None
        assert status.progress == 0

    def test_status_later_resolves_to_status(self, manager):
        """Long-polls run on their own pool and resolve to the job status."""
        job_id = manager.store.enqueue("Body")
        future = manager.status_later(job_id, 0.05)
        status = future.result(timeout=5)
        assert status.job_id == job_id
        assert status.status == JobStatus.QUEUED

    def test_template_conversion(self, manager, settings, template_fetcher):
        template_fetcher.templates[TEMPLATE_URL] = make_template(["{title}"], ["{content}"])
        job_id = manager.submit("Body text", mapping={"title": "A Title"}, template_url=TEMPLATE_URL)
        status = wait_for(manager, job_id)

        assert status.status == JobStatus.SUCCEEDED
        data = (settings.output_dir / f"job-{job_id}.docx").read_bytes()
        assert docx_paragraph_texts(data) == ["A Title", "Body text"]

    def test_template_fetch_failure_fails_job(self, manager, settings, print_renderer):
        job_id = manager.submit("Body", template_url=TEMPLATE_URL)
        status = wait_for(manager, job_id)

        assert status.status == JobStatus.FAILED
        assert status.error.startswith("Template fetch failed")
        assert status.docx_url is None
        assert status.pdf_url is None
        assert not (settings.output_dir / f"job-{job_id}.docx").exists()
        assert print_renderer.calls == []

    def test_unbound_placeholder_fails_job(self, manager, template_fetcher):
        template_fetcher.templates[TEMPLATE_URL] = make_template(["{journal}"])
        status = wait_for(manager, manager.submit("Body", template_url=TEMPLATE_URL))
        assert status.status == JobStatus.FAILED
        assert "{journal}" in status.error

    def test_pdf_failure_fails_job(self, settings, template_fetcher):
        renderer = FakePrintRenderer(error=PdfRenderError("PDF rendering failed: browser crashed"))
        manager = JobManager.from_settings(
            settings,
            document_renderer=DocumentRenderer(template_fetcher),
            print_renderer=renderer,
        )
        try:
            job_id = manager.submit("Body")
            status = wait_for(manager, job_id)
        finally:
            manager.shutdown()

        assert status.status == JobStatus.FAILED
        assert status.error == "PDF rendering failed: browser crashed"
        assert status.docx_url is None
        assert not (settings.output_dir / f"job-{job_id}.pdf").exists()

    def test_unexpected_errors_do_not_stop_the_pool(self, settings, print_renderer):
        class FlakyRenderer:
            calls = 0

            def render(self, content_text, mapping=None, template_url=None):
                FlakyRenderer.calls += 1
                if FlakyRenderer.calls == 1:
                    raise RuntimeError("disk on fire")
                return DocumentRenderer().render(content_text, mapping, template_url)

        manager = JobManager.from_settings(
            settings,
            document_renderer=FlakyRenderer(),
            print_renderer=print_renderer,
        )
        try:
            broken = manager.submit("First")
            broken_status = wait_for(manager, broken)
            healthy_status = wait_for(manager, manager.submit("Second"))
        finally:
            manager.shutdown()

        assert broken_status.status == JobStatus.FAILED
        assert "disk on fire" in broken_status.error
        assert healthy_status.status == JobStatus.SUCCEEDED

    def test_concurrent_submissions_are_independent(self, manager, template_fetcher):
        template_fetcher.templates[TEMPLATE_URL] = make_template(["{content}"])
        missing_url = "https://journals.example.org/templates/missing.docx"

        submitted = {}
        for index in range(12):
            url = TEMPLATE_URL if index % 2 == 0 else missing_url
            submitted[manager.submit(f"Manuscript {index}", template_url=url)] = index

        assert len(submitted) == 12
        for job_id, index in submitted.items():
            status = wait_for(manager, job_id)
            expected = JobStatus.SUCCEEDED if index % 2 == 0 else JobStatus.FAILED
            assert status.status == expected
            assert status.job_id == job_id

    def test_detail_contains_events(self, manager):
        job_id = manager.submit("Body", mapping={"title": "T"})
        wait_for(manager, job_id)
        detail = manager.get_job(job_id)
        assert detail.mapping == {"title": "T"}
        assert detail.content_length == 4
        assert detail.events[-1].message == "Conversion completed."
        assert detail.pdf_url.endswith(f"job-{job_id}.pdf")


class TestStatus:
    def test_unknown_job_is_not_found(self, manager):
        status = manager.status("does-not-exist")
        assert status.is_not_found
        assert status.status == JobStatus.FAILED
        assert status.error == "not_found"
        assert status.progress == 0

    def test_unknown_job_with_wait_returns_immediately(self, manager):
        assert manager.status("does-not-exist", wait=5).is_not_found

    def test_wait_is_capped(self, settings, print_renderer, template_fetcher):
        manager = JobManager.from_settings(
            settings,
            document_renderer=DocumentRenderer(template_fetcher),
            print_renderer=print_renderer,
        )
        manager.max_wait_seconds = 0.1
        manager.shutdown()
        # With the pool shut down, the job stays queued
        job_id = manager.store.enqueue("Body")
        assert manager.status(job_id, wait=60).status == JobStatus.QUEUED

    def test_list_jobs(self, manager):
        first = manager.submit("one")
        second = manager.submit("two")
        wait_for(manager, first)
        wait_for(manager, second)
        assert {summary.id for summary in manager.list_jobs()} == {first, second}


class TestStart:
    """Tests for redelivery after a restart."""

    def test_start_redelivers_unfinished_jobs(self, settings, print_renderer, template_fetcher):
        store = JobStore.open(settings.db_path)
        interrupted = store.enqueue("Interrupted")
        store.claim(interrupted)
        store.update_progress(interrupted, 40)
        waiting = store.enqueue("Waiting")

        manager = JobManager.from_settings(
            settings,
            document_renderer=DocumentRenderer(template_fetcher),
            print_renderer=print_renderer,
        )
        try:
            assert manager.start() == 2
            assert wait_for(manager, interrupted).status == JobStatus.SUCCEEDED
            assert wait_for(manager, waiting).status == JobStatus.SUCCEEDED
        finally:
            manager.shutdown()

    def test_start_with_nothing_to_do(self, manager):
        assert manager.start() == 0

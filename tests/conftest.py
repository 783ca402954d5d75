"""
Pytest configuration and fixtures for Manuscript Formatter Backend tests.
"""

import os
import shutil
import tempfile
from io import BytesIO
from typing import Dict, List, Optional, Union

import pytest
from docx import Document
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="manuscript_test_")
os.environ["FILES_DIR"] = os.path.join(_TEST_ROOT, "files")
os.environ["JOBS_DB_PATH"] = os.path.join(_TEST_ROOT, "jobs.db")
os.environ["BASE_PUBLIC_URL"] = "http://testserver"

from manuscript_formatter_backend.configuration import load_settings  # noqa: E402
from manuscript_formatter_backend.document_renderer import DocumentRenderer  # noqa: E402
from manuscript_formatter_backend.errors import TemplateFetchError  # noqa: E402
from manuscript_formatter_backend.job_manager import JobManager  # noqa: E402
from manuscript_formatter_backend.main import app, get_app_settings, get_job_manager  # noqa: E402

# Minimal PDF that is technically valid
SAMPLE_PDF = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""


class FakePrintRenderer:
    """Stands in for the browser pipeline; returns a fixed one-page PDF."""

    def __init__(self, error: Optional[Exception] = None, pdf: bytes = SAMPLE_PDF):
        self.error = error
        self.pdf = pdf
        self.calls: List[str] = []

    def render(self, content_text: str) -> bytes:
        self.calls.append(content_text)
        if self.error is not None:
            raise self.error
        return self.pdf


class FakeTemplateFetcher:
    """Serves templates from a dict; unknown URLs behave like a 404."""

    def __init__(self, templates: Optional[Dict[str, Union[bytes, Exception]]] = None):
        self.templates = dict(templates or {})
        self.requested: List[str] = []

    def fetch(self, url: str) -> bytes:
        self.requested.append(url)
        result = self.templates.get(url)
        if result is None:
            raise TemplateFetchError(f"Template fetch failed: HTTP 404 from {url}")
        if isinstance(result, Exception):
            raise result
        return result


def make_template(*paragraphs: List[str]) -> bytes:
    """Build a DOCX whose paragraphs consist of the given run texts."""
    document = Document()
    for runs in paragraphs:
        paragraph = document.add_paragraph()
        for text in runs:
            paragraph.add_run(text)
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def docx_paragraph_texts(data: bytes) -> List[str]:
    return [paragraph.text for paragraph in Document(BytesIO(data)).paragraphs]


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the directories used by the module-level app."""
    yield _TEST_ROOT
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a per-test files directory and database."""
    return load_settings({
        "server": {"base_public_url": "http://testserver"},
        "storage": {"files_dir": str(tmp_path / "files")},
        "jobs": {"db_path": str(tmp_path / "jobs.db"), "max_workers": 4, "max_wait_seconds": 10},
    })


@pytest.fixture
def print_renderer():
    return FakePrintRenderer()


@pytest.fixture
def template_fetcher():
    return FakeTemplateFetcher()


@pytest.fixture
def manager(settings, print_renderer, template_fetcher):
    """A JobManager wired to fake browser and template collaborators."""
    job_manager = JobManager.from_settings(
        settings,
        document_renderer=DocumentRenderer(template_fetcher),
        print_renderer=print_renderer,
    )
    yield job_manager
    job_manager.shutdown(wait=True)


@pytest.fixture
def client(manager, settings):
    """Create a test client for the FastAPI app backed by the test manager."""
    app.dependency_overrides[get_job_manager] = lambda: manager
    app.dependency_overrides[get_app_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sample_pdf():
    return SAMPLE_PDF

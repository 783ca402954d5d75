"""
Tests for the PDF print pipeline.

The browser is replaced by a scripted stand-in for most tests; the final
class drives a real Chromium and is skipped when none can be launched.
"""

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from manuscript_formatter_backend import print_renderer as print_module
from manuscript_formatter_backend.errors import PdfRenderError
from manuscript_formatter_backend.print_renderer import PrintRenderer, build_printable_html


class _FakePage:
    def __init__(self, browser):
        self.browser = browser

    def set_default_timeout(self, timeout):
        self.browser.default_timeout = timeout

    def set_content(self, html, wait_until=None, timeout=None):
        self.browser.loaded = (html, wait_until, timeout)
        if self.browser.fail_on == "load":
            raise self.browser.error

    def pdf(self, format=None, print_background=False):
        self.browser.pdf_options = (format, print_background)
        if self.browser.fail_on == "pdf":
            raise self.browser.error
        return self.browser.output


class _FakeContext:
    def __init__(self, browser):
        self.browser = browser

    def new_page(self):
        return _FakePage(self.browser)


class _FakeBrowser:
    def __init__(self, output=b"%PDF-1.4 fake", fail_on=None, error=None):
        self.output = output
        self.fail_on = fail_on
        self.error = error
        self.closed = False
        self.loaded = None
        self.pdf_options = None
        self.default_timeout = None

    def new_context(self):
        return _FakeContext(self)

    def close(self):
        self.closed = True


class _FakeChromium:
    def __init__(self, browser, launch_error=None):
        self.browser = browser
        self.launch_error = launch_error
        self.launch_kwargs = None

    def launch(self, **kwargs):
        self.launch_kwargs = kwargs
        if self.launch_error is not None:
            raise self.launch_error
        return self.browser


class _FakePlaywright:
    def __init__(self, chromium):
        self.chromium = chromium

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


@pytest.fixture
def fake_browser(monkeypatch):
    """Install a scripted browser in place of Playwright."""

    def install(browser=None, launch_error=None):
        browser = browser or _FakeBrowser()
        chromium = _FakeChromium(browser, launch_error=launch_error)
        monkeypatch.setattr(print_module, "sync_playwright", lambda: _FakePlaywright(chromium))
        return browser, chromium

    return install


class TestBuildPrintableHtml:
    """Tests for the HTML intermediate."""

    def test_paragraphs_become_p_elements(self):
        document = build_printable_html("First.\n\nSecond.")
        assert document.startswith("<!doctype html>")
        assert "<p>First.</p><p>Second.</p>" in document

    def test_markup_is_escaped(self):
        """Manuscript text can never inject markup or scripts."""
        document = build_printable_html("<script>alert(1)</script>\n\nA & B")
        assert "<script>" not in document
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in document
        assert "A &amp; B" in document

    def test_print_styles(self):
        document = build_printable_html("Text")
        assert "size: A4" in document
        assert "Times New Roman" in document
        assert "text-align: justify" in document
        assert 'charset="utf-8"' in document

    def test_empty_content_has_no_paragraphs(self):
        assert "<p>" not in build_printable_html("   ")


class TestPrintRenderer:
    """Tests for browser orchestration and error wrapping."""

    def test_returns_pdf_bytes(self, fake_browser):
        browser, chromium = fake_browser()
        renderer = PrintRenderer(load_timeout_ms=1234, render_timeout_ms=5678, launch_timeout_ms=999)
        assert renderer.render("Hello\n\nWorld") == b"%PDF-1.4 fake"

        html, wait_until, timeout = browser.loaded
        assert "<p>Hello</p>" in html
        assert wait_until == "domcontentloaded"
        assert timeout == 1234
        assert browser.default_timeout == 5678
        assert browser.pdf_options == ("A4", True)
        assert chromium.launch_kwargs["headless"] is True
        assert chromium.launch_kwargs["timeout"] == 999
        assert browser.closed

    def test_no_sandbox_flag(self, fake_browser):
        _, chromium = fake_browser()
        PrintRenderer(no_sandbox=True).render("Text")
        assert "--no-sandbox" in chromium.launch_kwargs["args"]

    def test_launch_failure(self, fake_browser):
        fake_browser(launch_error=PlaywrightError("Executable doesn't exist"))
        with pytest.raises(PdfRenderError) as exc_info:
            PrintRenderer().render("Text")
        assert "Executable doesn't exist" in str(exc_info.value)

    def test_load_timeout_closes_browser(self, fake_browser):
        browser, _ = fake_browser(_FakeBrowser(fail_on="load", error=PlaywrightTimeoutError("Timeout 15000ms exceeded")))
        with pytest.raises(PdfRenderError) as exc_info:
            PrintRenderer().render("Text")
        assert "timed out" in str(exc_info.value)
        assert browser.closed

    def test_pdf_failure_closes_browser(self, fake_browser):
        error = PlaywrightError("Target closed")
        browser, _ = fake_browser(_FakeBrowser(fail_on="pdf", error=error))
        with pytest.raises(PdfRenderError) as exc_info:
            PrintRenderer().render("Text")
        assert exc_info.value.cause is error
        assert browser.closed

    def test_empty_output_is_an_error(self, fake_browser):
        fake_browser(_FakeBrowser(output=b""))
        with pytest.raises(PdfRenderError):
            PrintRenderer().render("Text")


class TestRealBrowser:
    """Renders through an installed Chromium, when one is available."""

    def test_renders_a4_pdf(self):
        renderer = PrintRenderer(no_sandbox=True)
        try:
            pdf = renderer.render("First paragraph.\n\nSecond paragraph.")
        except PdfRenderError as exc:
            pytest.skip(f"Chromium unavailable: {exc}")
        assert pdf.startswith(b"%PDF")
        assert pdf.rstrip().endswith(b"%%EOF")
        assert b"/Type /Page" in pdf

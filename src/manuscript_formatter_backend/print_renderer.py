"""
PDF rendering through a headless Chromium print pipeline.

The manuscript is first turned into a standalone, print-styled HTML document
and then loaded into a throwaway browser page whose print-to-PDF output is
returned. Each render launches its own browser so a crash or hang is confined
to one job, and the browser is closed on every path.
"""

from __future__ import annotations

import html
import logging
from typing import Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .errors import PdfRenderError
from .utils import split_paragraphs

logger = logging.getLogger(__name__)

PAGE_FORMAT = "A4"
PAGE_MARGIN = "2.54cm"

PRINT_STYLES = f"""
@page {{ size: {PAGE_FORMAT}; margin: {PAGE_MARGIN}; }}
body {{ margin: 0; font-family: "Times New Roman", Times, serif; font-size: 12pt; line-height: 1.5; color: #0a0a0a; }}
.paper p {{ text-align: justify; margin: 0 0 12pt 0; text-indent: 1.27cm; }}
"""


def build_printable_html(content_text: str) -> str:
    """
    Build the HTML intermediate for the PDF.

    Every paragraph is escaped, so markup typed into a manuscript is printed
    as text rather than interpreted.

    Args:
        content_text: Raw manuscript text

    Returns:
        A complete HTML document with inline print styles
    """
    paragraphs = split_paragraphs(content_text)
    inner = "".join(f"<p>{html.escape(paragraph, quote=False)}</p>" for paragraph in paragraphs)
    return (
        "<!doctype html><html><head>"
        '<meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width,initial-scale=1">'
        f"<style>{PRINT_STYLES}</style>"
        f'</head><body><div class="paper">{inner}</div></body></html>'
    )


class PrintRenderer:
    """
    Renders manuscripts to PDF with Playwright's Chromium.

    Attributes:
        no_sandbox: Launch Chromium with ``--no-sandbox`` (containers without
            user namespaces need this)
        launch_timeout_ms: Upper bound for starting the browser
        load_timeout_ms: Upper bound for loading the HTML (``domcontentloaded``)
        render_timeout_ms: Default timeout for the remaining page operations
    """

    def __init__(
        self,
        no_sandbox: bool = False,
        launch_timeout_ms: int = 30000,
        load_timeout_ms: int = 15000,
        render_timeout_ms: int = 60000,
    ) -> None:
        self.no_sandbox = no_sandbox
        self.launch_timeout_ms = launch_timeout_ms
        self.load_timeout_ms = load_timeout_ms
        self.render_timeout_ms = render_timeout_ms

    def _launch_args(self) -> Optional[list]:
        if self.no_sandbox:
            return ["--no-sandbox", "--disable-setuid-sandbox"]
        return None

    def render(self, content_text: str) -> bytes:
        """
        Render the manuscript to PDF bytes.

        Raises:
            PdfRenderError: Browser launch, page load or PDF generation failed,
                or the browser returned an empty document
        """
        document = build_printable_html(content_text)
        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(
                    headless=True,
                    args=self._launch_args(),
                    timeout=self.launch_timeout_ms,
                )
                try:
                    context = browser.new_context()
                    page = context.new_page()
                    page.set_default_timeout(self.render_timeout_ms)
                    page.set_content(document, wait_until="domcontentloaded", timeout=self.load_timeout_ms)
                    pdf = page.pdf(format=PAGE_FORMAT, print_background=True)
                finally:
                    browser.close()
        except PlaywrightTimeoutError as exc:
            raise PdfRenderError(f"PDF rendering timed out: {exc}", cause=exc) from exc
        except PlaywrightError as exc:
            raise PdfRenderError(f"PDF rendering failed: {exc}", cause=exc) from exc

        if not pdf:
            raise PdfRenderError("PDF rendering produced an empty document")
        logger.debug(f"Rendered PDF ({len(pdf)} bytes)")
        return pdf

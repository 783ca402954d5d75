"""
DOCX rendering for manuscripts.

Two paths produce a Word document from manuscript text:

- Plain: every blank-line-delimited paragraph becomes a justified
  Times New Roman 12pt paragraph.
- Template: a DOCX template is downloaded and its ``{placeholder}`` tokens
  are filled from ``{"content": <manuscript>, **mapping}``.

Word frequently splits a token such as ``{title}`` across several runs
(``{``, ``tit``, ``le}``) when the author edits or spell-checks it, so
substitution works on the joined text of each paragraph and writes the
result back into the text nodes it came from, keeping the first run's
formatting. Text nodes are gathered per paragraph wherever they sit, so
tokens inside hyperlinks, tracked insertions, content controls and text
boxes are filled like any other.
"""

from __future__ import annotations

import logging
import re
import zipfile
from io import BytesIO
from typing import Any, Dict, Iterator, List, Mapping, Optional

import requests
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.opc.exceptions import PackageNotFoundError
from docx.opc.oxml import serialize_part_xml
from docx.opc.part import XmlPart
from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import qn
from docx.shared import Pt

from .errors import RenderError, TemplateFetchError, TemplateRenderError
from .utils import split_paragraphs

logger = logging.getLogger(__name__)

FONT_NAME = "Times New Roman"
FONT_SIZE = Pt(12)

PLACEHOLDER_PATTERN = re.compile(r"\{([^{}\s]+)\}")
CONTENT_KEY = "content"

W_P = qn("w:p")
W_T = qn("w:t")
XML_SPACE = qn("xml:space")
TEMPLATE_PART_PATTERN = re.compile(r"^/word/(document|header\d*|footer\d*|footnotes|endnotes)\.xml$")


class TemplateFetcher:
    """Downloads template files over HTTP(S)."""

    def __init__(self, timeout: float = 20.0, max_bytes: int = 20 * 1024 * 1024, session=None) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._session = session

    def fetch(self, url: str) -> bytes:
        """
        Download a template.

        Raises:
            TemplateFetchError: On transport errors, non-2xx responses or
                bodies larger than ``max_bytes``
        """
        try:
            response = (self._session or requests).get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise TemplateFetchError(f"Template fetch failed: {exc}", cause=exc) from exc

        try:
            if not response.ok:
                raise TemplateFetchError(f"Template fetch failed: HTTP {response.status_code} from {url}")

            buffer = bytearray()
            for chunk in response.iter_content(chunk_size=64 * 1024):
                buffer.extend(chunk)
                if len(buffer) > self.max_bytes:
                    raise TemplateFetchError(f"Template fetch failed: template exceeds {self.max_bytes} bytes")
        except requests.RequestException as exc:
            raise TemplateFetchError(f"Template fetch failed: {exc}", cause=exc) from exc
        finally:
            response.close()

        if not buffer:
            raise TemplateFetchError(f"Template fetch failed: empty response from {url}")
        return bytes(buffer)


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_format_value(item) for item in value)
    return str(value)


def _template_parts(document) -> Iterator[Any]:
    """Yield the package parts that can carry placeholders."""
    for part in document.part.package.iter_parts():
        if TEMPLATE_PART_PATTERN.match(str(part.partname)):
            yield part


def _owning_paragraph(node):
    parent = node.getparent()
    while parent is not None and parent.tag != W_P:
        parent = parent.getparent()
    return parent


def _text_nodes(paragraph_element) -> List[Any]:
    """
    Collect the ``w:t`` nodes that belong to one paragraph.

    Runs nested in hyperlinks, tracked insertions and content controls are
    included; paragraphs of text boxes anchored in the paragraph are left to
    their own pass.
    """
    return [
        node for node in paragraph_element.iter(W_T)
        if _owning_paragraph(node) is paragraph_element
    ]


def _set_text(node, text: str) -> None:
    """Write text into a ``w:t`` node, turning newlines into line breaks."""
    lines = text.split("\n")
    node.text = lines[0]
    node.set(XML_SPACE, "preserve")
    anchor = node
    for line in lines[1:]:
        line_break = OxmlElement("w:br")
        anchor.addnext(line_break)
        continuation = OxmlElement("w:t")
        continuation.text = line
        continuation.set(XML_SPACE, "preserve")
        line_break.addnext(continuation)
        anchor = continuation


def _substitute_paragraph(paragraph_element, values: Mapping[str, Any]) -> None:
    nodes = _text_nodes(paragraph_element)
    texts = [node.text or "" for node in nodes]
    joined = "".join(texts)
    matches = list(PLACEHOLDER_PATTERN.finditer(joined))
    if not matches:
        return

    starts: List[int] = []
    offset = 0
    for text in texts:
        starts.append(offset)
        offset += len(text)

    def node_at(position: int, inclusive_end: bool = False) -> int:
        for index, (start, text) in enumerate(zip(starts, texts)):
            end = start + len(text)
            if start <= position < end or (inclusive_end and start < position <= end):
                return index
        raise TemplateRenderError(f"Template placeholder could not be located near offset {position}")

    # Right to left so earlier offsets stay valid
    for match in reversed(matches):
        name = match.group(1)
        if name not in values:
            raise TemplateRenderError(f"Template placeholder {{{name}}} has no value")
        replacement = _format_value(values[name])
        start, end = match.span()
        first = node_at(start)
        last = node_at(end, inclusive_end=True)

        head = texts[first][: start - starts[first]]
        if first == last:
            tail = texts[first][end - starts[first]:]
            texts[first] = head + replacement + tail
        else:
            texts[first] = head + replacement
            for index in range(first + 1, last):
                texts[index] = ""
            texts[last] = texts[last][end - starts[last]:]

    for node, text in zip(nodes, texts):
        if (node.text or "") != text:
            _set_text(node, text)


def _substitute_part(part, values: Mapping[str, Any]) -> None:
    if isinstance(part, XmlPart):
        for paragraph_element in list(part.element.iter(W_P)):
            _substitute_paragraph(paragraph_element, values)
        return

    # Notes parts are not parsed by python-docx; edit their XML and store it back
    element = parse_xml(part.blob)
    for paragraph_element in list(element.iter(W_P)):
        _substitute_paragraph(paragraph_element, values)
    part._blob = serialize_part_xml(element)


def render_template_docx(template_bytes: bytes, values: Mapping[str, Any]) -> bytes:
    """
    Fill ``{placeholder}`` tokens of a DOCX template.

    Every paragraph of the main document, headers, footers, footnotes and
    endnotes is scanned, including paragraphs in tables and text boxes and
    runs wrapped in hyperlinks, tracked insertions or content controls.

    Args:
        template_bytes: The template package
        values: Placeholder bindings

    Returns:
        The rendered DOCX package

    Raises:
        TemplateRenderError: If the template is not a DOCX package or uses a
            placeholder without a binding
    """
    try:
        document = Document(BytesIO(template_bytes))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise TemplateRenderError(f"Template is not a valid DOCX file: {exc}", cause=exc) from exc

    for part in _template_parts(document):
        _substitute_part(part, values)

    return _serialize(document)


def render_plain_docx(content_text: str) -> bytes:
    """
    Build a DOCX with one justified paragraph per manuscript paragraph.

    A manuscript without paragraphs still yields one empty paragraph so the
    document body is never empty.
    """
    document = Document()
    paragraphs = split_paragraphs(content_text)
    if not paragraphs:
        document.add_paragraph("")
    for text in paragraphs:
        paragraph = document.add_paragraph()
        paragraph.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY
        run = paragraph.add_run(text)
        run.font.name = FONT_NAME
        run.font.size = FONT_SIZE
    return _serialize(document)


def _serialize(document) -> bytes:
    buffer = BytesIO()
    try:
        document.save(buffer)
    except Exception as exc:
        raise RenderError(f"DOCX serialisation failed: {exc}", cause=exc) from exc
    return buffer.getvalue()


class DocumentRenderer:
    """
    Chooses the template or plain path for a job payload.

    Attributes:
        fetcher: Downloads templates referenced by ``template_url``
    """

    def __init__(self, fetcher: Optional[TemplateFetcher] = None) -> None:
        self.fetcher = fetcher or TemplateFetcher()

    def render(
        self,
        content_text: str,
        mapping: Optional[Dict[str, Any]] = None,
        template_url: Optional[str] = None,
    ) -> bytes:
        """
        Render the manuscript to DOCX bytes.

        Raises:
            TemplateFetchError: Template download failed
            TemplateRenderError: Template unusable or placeholder unbound
            RenderError: Unexpected serialisation failure
        """
        if not template_url:
            return render_plain_docx(content_text)

        logger.info(f"Fetching template {template_url}")
        template_bytes = self.fetcher.fetch(template_url)
        values: Dict[str, Any] = {CONTENT_KEY: content_text, **(mapping or {})}
        return render_template_docx(template_bytes, values)

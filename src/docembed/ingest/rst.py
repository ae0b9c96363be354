"""reStructuredText converter — docutils HTML5 writer, then the shared serializer."""

from __future__ import annotations

from docutils.core import publish_parts
from docutils.utils import SystemMessage

from docembed.ingest.errors import ParseFailure
from docembed.ingest.html import html_to_markdown
from docembed.ingest.types import ConvertedDocument

# Never print or halt on docutils system messages; no file or raw inclusion.
_SETTINGS = {
    "report_level": 5,
    "halt_level": 5,
    "doctitle_xform": False,
    "sectsubtitle_xform": False,
    "initial_header_level": 1,
    "file_insertion_enabled": False,
    "raw_enabled": False,
    "syntax_highlight": "none",
}


def rst_to_html(content: str) -> str:
    """Render reStructuredText to an HTML fragment (top-level titles are <h1>)."""
    try:
        parts = publish_parts(
            source=content,
            writer_name="html5",
            settings_overrides=dict(_SETTINGS),
        )
    except SystemMessage as exc:
        raise ParseFailure(f"Invalid reStructuredText: {exc}") from exc
    return parts["body"]


def extract_rst(content: str) -> ConvertedDocument:
    return ConvertedDocument(markdown=html_to_markdown(rst_to_html(content)), meta={})

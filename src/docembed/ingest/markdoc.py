"""Markdoc converter — tag-aware Markdown rendered to HTML, then back to Markdown.

Only ``{% img %}`` / ``{% image %}`` tags carry meaning for embedding and are
rendered as ``<img>`` elements; every other tag delimiter is dropped while
its inner content is kept.
"""

from __future__ import annotations

import html as html_lib
import re

from markdown_it import MarkdownIt

from docembed.ingest.html import html_to_markdown
from docembed.ingest.markdown import extract_frontmatter
from docembed.ingest.types import ConvertedDocument

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n.*?\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_IMAGE_TAG_RE = re.compile(r"\{%\s*(?:img|image)\b(.*?)/?\s*%\}", re.DOTALL)
_ATTR_RE = re.compile(r"""(\w+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_ANY_TAG_RE = re.compile(r"\{%.*?%\}", re.DOTALL)

_renderer = MarkdownIt("commonmark", {"html": True}).enable(["table", "strikethrough"])


def _image_html(match: re.Match[str]) -> str:
    attrs = {name: dq or sq for name, dq, sq in _ATTR_RE.findall(match.group(1))}
    src = html_lib.escape(attrs.get("src", ""), quote=True)
    alt = html_lib.escape(attrs.get("alt", ""), quote=True)
    return f'<img src="{src}" alt="{alt}">'


def markdoc_to_html(content: str) -> str:
    """Render a Markdoc document body (frontmatter already removed) to HTML."""
    body = _IMAGE_TAG_RE.sub(_image_html, content)
    body = _ANY_TAG_RE.sub("", body)
    return _renderer.render(body)


def extract_markdoc(content: str) -> ConvertedDocument:
    """Convert Markdoc to Markdown; the frontmatter becomes the document meta."""
    meta = extract_frontmatter(content)
    body = _FRONTMATTER_RE.sub("", content, count=1)
    return ConvertedDocument(markdown=html_to_markdown(markdoc_to_html(body)), meta=meta)

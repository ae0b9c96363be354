"""HTML → Markdown serializer shared by the HTML, Markdoc and RST converters."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag
from markdownify import MarkdownConverter

from docembed.ingest.types import ConvertedDocument

# Stripped before conversion; never part of a document's content.
_EXCLUDED_TAGS = ["head", "script", "style", "nav", "footer", "aside"]

_HEADING_TEXT_RE = re.compile(r"^(#{1,6}) (.+)$")
_CODE_CLASSES = {"code", "literal-block", "highlight"}


def _code_language(el: Tag) -> str | None:
    """Fence language for a <pre>: data-language, language-x class, or RST's ``code x`` class."""
    if el.get("data-language"):
        return el.get("data-language")
    classes = list(el.get("class") or [])
    code = el.find("code")
    if isinstance(code, Tag):
        classes.extend(code.get("class") or [])
    for cls in classes:
        if cls.startswith("language-"):
            return cls[len("language-"):]
    if "code" in classes:
        rest = [c for c in classes if c not in _CODE_CLASSES]
        if rest:
            return rest[0]
    return None


class _DocConverter(MarkdownConverter):
    """markdownify converter tuned for embedding input.

    Anchors wrapping a heading become ``# [Heading](href)`` instead of a link
    around a heading, which is not valid Markdown.
    """

    def convert_a(self, el, text, parent_tags):
        match = _HEADING_TEXT_RE.match(text.strip())
        href = el.get("href")
        if match and href:
            hashes, title = match.groups()
            return f"\n\n{hashes} [{title}]({href})\n\n"
        return super().convert_a(el, text, parent_tags)


_converter = _DocConverter(
    heading_style="atx",
    bullets="-",
    escape_asterisks=False,
    escape_underscores=False,
    code_language_callback=_code_language,
)


def html_to_markdown(
    html: str,
    include_selectors: str | None = None,
    exclude_selectors: str | None = None,
) -> str:
    """Convert an HTML document or fragment to Markdown.

    Args:
        html: Raw HTML.
        include_selectors: CSS selector list. When given, only the first
            matching element (in document order) is converted; no match
            yields an empty string.
        exclude_selectors: CSS selector list of descendants to drop from the
            converted element.

    Returns:
        Markdown text with surrounding whitespace stripped.
    """
    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_EXCLUDED_TAGS):
        if not tag.decomposed:
            tag.decompose()

    if include_selectors:
        target = soup.select_one(include_selectors)
        if target is None:
            return ""
    else:
        target = soup.find("main") or soup.find("body") or soup

    if exclude_selectors:
        for tag in target.select(exclude_selectors):
            tag.decompose()

    return _converter.convert(target.decode_contents()).strip()


def extract_html(content: str) -> ConvertedDocument:
    """Convert a full HTML page; ``<title>`` becomes ``meta["title"]``."""
    soup = BeautifulSoup(content, "html.parser")
    meta: dict[str, str] = {}
    title = soup.find("title")
    if title is not None and title.get_text(strip=True):
        meta["title"] = title.get_text(strip=True)
    return ConvertedDocument(markdown=html_to_markdown(content), meta=meta)

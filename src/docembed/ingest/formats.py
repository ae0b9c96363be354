"""Format detection and conversion into sectioned Markdown.

Each content type maps to a converter that yields Markdown plus any meta it
can read from the source format. The Markdown is then split into sections,
chunked to the length budget, and the file title is settled:
frontmatter ``title`` > first lead heading > file name > "Untitled".
"""

from __future__ import annotations

import datetime
import logging
import posixpath
from enum import Enum
from typing import Any, Callable

from docembed.config import ProcessorCfg
from docembed.ingest.chunker import chunk_sections
from docembed.ingest.errors import ParseFailure
from docembed.ingest.html import extract_html
from docembed.ingest.markdoc import extract_markdoc
from docembed.ingest.markdown import markdown_to_file_section_data
from docembed.ingest.rst import extract_rst
from docembed.ingest.types import ConvertedDocument, FileData, FileSectionsData

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled"

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
    ["md", "mdx", "mdoc", "rst", "txt", "text", "html", "htm"]
)


class ContentType(str, Enum):
    MARKDOWN = "markdown"
    MDX = "mdx"
    MARKDOC = "markdoc"
    RST = "rst"
    HTML = "html"
    TEXT = "text"


_EXTENSION_TYPES: dict[str, ContentType] = {
    "mdoc": ContentType.MARKDOC,
    "mdx": ContentType.MDX,
    "md": ContentType.MARKDOWN,
    "rst": ContentType.RST,
    "html": ContentType.HTML,
    "htm": ContentType.HTML,
}


# ---------------------------------------------------------------------------
# Extension helpers
# ---------------------------------------------------------------------------


def get_file_extension(path_or_name: str) -> str | None:
    """Extension of the last path segment, without the dot (None if absent)."""
    name = posixpath.basename(path_or_name)
    if "." not in name.lstrip("."):
        return None
    return name.rsplit(".", 1)[1].lower()


def is_supported_file_type(path_or_name: str) -> bool:
    """True for supported extensions, and for names with no extension at all."""
    ext = get_file_extension(path_or_name)
    return ext is None or ext in SUPPORTED_EXTENSIONS


def detect_content_type(name: str, content_type: str | None = None) -> ContentType:
    """Resolve a file's ContentType from an explicit value or its extension.

    Unknown explicit values and unknown extensions are treated as text.
    """
    if content_type:
        try:
            return ContentType(content_type.lower())
        except ValueError:
            logger.info("Unknown content type '%s' for %s; treating as text", content_type, name)
            return ContentType.TEXT
    ext = get_file_extension(name)
    return _EXTENSION_TYPES.get(ext or "", ContentType.TEXT)


def remove_file_extension(name: str) -> str:
    ext = get_file_extension(name)
    return name[: -(len(ext) + 1)] if ext else name


def infer_file_title(meta: dict[str, Any], lead_file_heading: str | None, path: str) -> str:
    """Title precedence: meta title > lead heading > file name > "Untitled"."""
    title = meta.get("title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    if lead_file_heading:
        return lead_file_heading
    name = remove_file_extension(posixpath.basename(path)) if path else ""
    return name or DEFAULT_TITLE


def json_safe_meta(meta: dict[str, Any]) -> dict[str, Any]:
    """Return *meta* with YAML-only values made JSON-serializable.

    ``yaml.safe_load`` yields dates, datetimes, sets and bytes from ordinary
    frontmatter; dates become ISO strings, sets become lists, anything else
    unknown becomes its ``str()``.
    """
    return {str(key): _json_safe(value) for key, value in meta.items()}


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_json_safe(v) for v in value), key=str)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


def _convert_markdown(content: str) -> ConvertedDocument:
    return ConvertedDocument(markdown=content, mdx=True)


def _convert_text(content: str) -> ConvertedDocument:
    return ConvertedDocument(markdown=content, mdx=False)


CONVERTERS: dict[ContentType, Callable[[str], ConvertedDocument]] = {
    ContentType.MARKDOWN: _convert_markdown,
    ContentType.MDX: _convert_markdown,
    ContentType.MARKDOC: extract_markdoc,
    ContentType.RST: extract_rst,
    ContentType.HTML: extract_html,
    ContentType.TEXT: _convert_text,
}


def convert(file: FileData) -> ConvertedDocument:
    """Run the converter for *file*'s content type.

    A document that cannot be converted yields empty Markdown.
    """
    content_type = detect_content_type(file.name or file.path, file.content_type)
    try:
        return CONVERTERS[content_type](file.content)
    except ParseFailure as exc:
        logger.warning("Could not convert %s as %s: %s", file.path, content_type.value, exc)
        return ConvertedDocument(markdown="", meta={})


def process_file_data(
    file: FileData,
    max_length: int,
    processor: ProcessorCfg | None = None,
) -> FileSectionsData:
    """Convert, split and chunk *file* into sections with a settled title.

    Returned meta merges, in increasing priority: source-supplied metadata,
    converter meta (frontmatter or HTML ``<title>``), then the inferred title
    if none of those provided one.
    """
    converted = convert(file)
    data = markdown_to_file_section_data(
        converted.markdown, as_mdx=converted.mdx, processor=processor
    )

    meta: dict[str, Any] = dict(file.metadata or {})
    meta.update(converted.meta)
    meta.update(data.meta)
    meta = json_safe_meta(meta)
    meta["title"] = infer_file_title(meta, data.lead_file_heading, file.path)

    return FileSectionsData(
        sections=chunk_sections(data.sections, max_length),
        meta=meta,
        lead_file_heading=data.lead_file_heading,
    )

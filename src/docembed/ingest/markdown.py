"""Section splitter — heading-delimited sections from Markdown/MDX (markdown-it-py).

Strategy:
- Parse with markdown-it-py (CommonMark + tables + strikethrough) and the
  mdit-py-plugins front-matter plugin.
- Every top-level heading starts a new section; content before the first
  heading is a section without a lead heading.
- Section text is rebuilt from the source lines of its top-level blocks, so
  the source Markdown survives untouched apart from MDX-only syntax.
- MDX is tried first. Content that is valid Markdown but not valid MDX
  (e.g. ``a < b`` or a stray ``{``) falls back to the plain grammar.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import yaml
from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdit_py_plugins.front_matter import front_matter_plugin

from docembed.config import ProcessorCfg, RewriteCfg
from docembed.ingest.errors import MdxSyntaxError, ParseFailure
from docembed.ingest.types import FileSectionsData, LeadHeading, Section

logger = logging.getLogger(__name__)

_md = (
    MarkdownIt("commonmark")
    .use(front_matter_plugin)
    .enable(["table", "strikethrough"])
)

_CODE_BLOCKS = {"fence", "code_block"}
_CODE_SPAN_RE = re.compile(r"(`+)(?:.|\n)*?\1")
_JSX_TAG_RE = re.compile(r"</?[A-Za-z][\w.:-]*(?:\s[^<>]*?)?/?>|<>|</>")
_EXPRESSION_RE = re.compile(r"\{[^{}]*\}")
_INVALID_LT_RE = re.compile(r"<(?=[\d\s=])")
_ESM_RE = re.compile(r"^(?:import|export)\s")
_EXTERNAL_URL_RE = re.compile(r"^https?://")
_LINK_RE = re.compile(r"(?<!!)(\[[^\]]*\]\(\s*)([^)\s]+)")
_IMAGE_RE = re.compile(r"(!\[[^\]]*\]\(\s*)([^)\s]+)")
_SLUG_STRIP_RE = re.compile(r"[^\w\- ]")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_frontmatter(content: str) -> dict[str, Any]:
    """Return the YAML frontmatter of *content* as a dict ({} if absent or invalid)."""
    for token in _md.parse(content):
        if token.type == "front_matter":
            return _load_frontmatter(token.content)
    return {}


def markdown_to_file_section_data(
    content: str,
    as_mdx: bool = True,
    processor: ProcessorCfg | None = None,
) -> FileSectionsData:
    """Split Markdown *content* into sections.

    Args:
        content: Markdown or MDX source.
        as_mdx: Try the MDX grammar first. Plain Markdown is used if the
            content is not valid MDX, or directly when False.
        processor: Optional link / image source rewrite rules.

    Returns:
        FileSectionsData with sections, frontmatter meta and lead file heading.
        A document that cannot be parsed at all yields no sections.
    """
    attempts = [True, False] if as_mdx else [False]
    for mdx in attempts:
        try:
            return _split(content, mdx, processor)
        except ParseFailure as exc:
            logger.debug("Parsing as %s failed: %s", "MDX" if mdx else "Markdown", exc)

    logger.warning("Could not parse document; no sections produced")
    return FileSectionsData(sections=[], meta={}, lead_file_heading=None)


def slugify(value: str) -> str:
    """GitHub-style heading anchor: lowercase, punctuation dropped, spaces → '-'."""
    return _SLUG_STRIP_RE.sub("", value.strip().lower()).replace(" ", "-")


def rewrite_targets(text: str, cfg: RewriteCfg | None, images: bool = False) -> str:
    """Apply regex rewrite rules to Markdown link (or image) targets in *text*.

    Replacement strings may use JavaScript-style ``$1`` group references.
    """
    if cfg is None or not cfg.rules:
        return text

    def _rewrite(match: re.Match[str]) -> str:
        url = match.group(2)
        if cfg.exclude_external_links and _EXTERNAL_URL_RE.match(url):
            return match.group(0)
        for rule in cfg.rules:
            replace = re.sub(r"\$(\d+)", r"\\g<\1>", rule.replace)
            url = re.sub(rule.pattern, replace, url, count=1)
        return match.group(1) + url

    return (_IMAGE_RE if images else _LINK_RE).sub(_rewrite, text)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _split(content: str, mdx: bool, processor: ProcessorCfg | None) -> FileSectionsData:
    try:
        tokens = _md.parse(content)
    except Exception as exc:
        raise ParseFailure(str(exc)) from exc

    lines = content.split("\n")
    meta: dict[str, Any] = {}
    sections: list[Section] = []
    blocks: list[str] = []
    heading: LeadHeading | None = None
    seen_slugs: dict[str, int] = {}

    def close_section() -> None:
        if blocks or heading is not None:
            sections.append(Section(content="\n\n".join(blocks), lead_heading=heading))

    for i, token in enumerate(tokens):
        if token.level != 0 or token.nesting < 0 or token.map is None:
            continue

        if token.type == "front_matter":
            meta = _load_frontmatter(token.content)
            continue

        start, end = token.map
        text = "\n".join(lines[start:end]).rstrip()
        is_code = token.type in _CODE_BLOCKS

        if mdx:
            if token.type == "html_block":
                # JSX flow element
                continue
            if not is_code:
                _check_mdx(text)
                stripped = text.strip()
                if token.type == "paragraph_open" and (
                    _ESM_RE.match(stripped) or _is_expression(stripped)
                ):
                    continue
                text = _strip_mdx_inline(text)

        if not is_code and processor is not None:
            text = rewrite_targets(text, processor.link_rewrite)
            text = rewrite_targets(text, processor.image_source_rewrite, images=True)

        if token.type == "heading_open":
            close_section()
            blocks = []
            value = _flatten_inline(tokens[i + 1], mdx)
            heading = LeadHeading(
                value=value,
                depth=int(token.tag[1:]),
                slug=_unique_slug(value, seen_slugs) or None,
            )

        if text.strip():
            blocks.append(text)

    close_section()

    lead_file_heading = next(
        (s.lead_heading.value for s in sections if s.lead_heading is not None), None
    )
    return FileSectionsData(sections=sections, meta=meta, lead_file_heading=lead_file_heading)


def _load_frontmatter(raw: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        logger.info("Ignoring invalid frontmatter: %s", exc)
        return {}
    return data if isinstance(data, dict) else {}


def _flatten_inline(token: Token, mdx: bool) -> str:
    """Plain text of an inline token: markup dropped, image alt text and code kept."""
    parts: list[str] = []
    for child in token.children or []:
        if child.type in ("text", "code_inline", "image"):
            parts.append(child.content)
        elif child.type in ("softbreak", "hardbreak"):
            parts.append(" ")
    value = "".join(parts)
    if mdx:
        value = _EXPRESSION_RE.sub("", value)
    return " ".join(value.split())


def _unique_slug(value: str, seen: dict[str, int]) -> str:
    slug = slugify(value)
    if not slug:
        return ""
    count = seen.get(slug, 0)
    seen[slug] = count + 1
    return slug if count == 0 else f"{slug}-{count}"


# ---------------------------------------------------------------------------
# MDX helpers
# ---------------------------------------------------------------------------


def _outside_code_spans(text: str) -> list[str]:
    return _CODE_SPAN_RE.split(text)[::2]


def _check_mdx(text: str) -> None:
    """Raise MdxSyntaxError for text that is valid Markdown but invalid MDX."""
    for part in _outside_code_spans(text):
        depth = 0
        for ch in part:
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth < 0:
                    raise MdxSyntaxError("Unexpected closing brace")
        if depth:
            raise MdxSyntaxError("Unclosed expression brace")
        if _INVALID_LT_RE.search(part):
            raise MdxSyntaxError("Unexpected character after '<'")


def _is_expression(text: str) -> bool:
    return text.startswith("{") and text.endswith("}") and not _EXPRESSION_RE.sub("", text).strip()


def _strip_mdx_inline(text: str) -> str:
    """Remove inline JSX tags and ``{…}`` expressions, leaving code spans intact."""
    out: list[str] = []
    pos = 0
    for match in _CODE_SPAN_RE.finditer(text):
        out.append(_strip_segment(text[pos:match.start()]))
        out.append(match.group(0))
        pos = match.end()
    out.append(_strip_segment(text[pos:]))
    return "".join(out)


def _strip_segment(segment: str) -> str:
    previous = None
    while previous != segment:
        previous = segment
        segment = _EXPRESSION_RE.sub("", segment)
    return _JSX_TAG_RE.sub("", segment)

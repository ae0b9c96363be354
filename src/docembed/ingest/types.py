"""In-flight data types for the ingest pipeline.

These never touch the database; persisted shapes live in ``docembed.db.models``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FileData:
    """A single document handed over by a source adapter."""

    path: str
    name: str
    content: str
    content_type: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class LeadHeading:
    value: str
    depth: int
    slug: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"value": self.value, "depth": self.depth}
        if self.slug:
            data["slug"] = self.slug
        return data


@dataclass
class Section:
    """A heading-delimited region of a document, or a chunk of one."""

    content: str
    lead_heading: LeadHeading | None = None


@dataclass
class FileSectionsData:
    sections: list[Section] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)
    lead_file_heading: str | None = None


@dataclass
class ConvertedDocument:
    """Output of a format converter: Markdown text ready for the splitter."""

    markdown: str
    meta: dict[str, Any] = field(default_factory=dict)
    mdx: bool = False

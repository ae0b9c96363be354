"""Domain models for the docembed database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class SourceRecord:
    id: str
    project_id: str
    type: str = "files"
    data: str = field(default_factory=lambda: "{}")
    inserted_at: str | None = None


@dataclass
class FileRecord:
    id: int
    source_id: str
    project_id: str
    path: str
    checksum: str
    meta: str = field(default_factory=lambda: "{}")
    raw_content: str = ""
    token_count: int = 0
    internal_metadata: str = field(default_factory=lambda: "{}")
    updated_at: str | None = None

    @property
    def meta_dict(self) -> dict[str, Any]:
        return json.loads(self.meta)

    @property
    def title(self) -> str | None:
        return self.meta_dict.get("title")


@dataclass
class SectionRecord:
    file_id: int
    content: str
    embedding: list[float]
    token_count: int
    cf_project_id: str
    meta: dict[str, Any] | None = None
    cf_file_meta: dict[str, Any] = field(default_factory=dict)
    id: int | None = None  # set after insert; None for unsaved sections

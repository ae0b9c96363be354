"""File sources: the adapters that hand documents to the orchestrator.

A source is an indexable collection. The orchestrator only asks for a path
until a file survives glob filtering and change detection, so sources backed
by slow storage should make ``get_file_path`` cheap and defer content reads
to ``get_file_name_content``.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Protocol, runtime_checkable

from docembed.ingest.checksum import create_checksum
from docembed.ingest.types import FileData

logger = logging.getLogger(__name__)

# Directory names never walked by DirectorySource.
_SKIP_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv"}


@runtime_checkable
class FileSource(Protocol):
    def __len__(self) -> int: ...

    def get_file_path(self, index: int) -> str: ...

    def get_file_name_content(self, index: int) -> tuple[str, str]: ...


@runtime_checkable
class ChecksumSource(FileSource, Protocol):
    """A source that can report a file's checksum without fetching its content."""

    def get_file_checksum(self, index: int) -> str: ...


class InMemorySource:
    """A source over a list of already-loaded ``FileData`` items."""

    def __init__(self, files: list[FileData]) -> None:
        self._files = list(files)

    def __len__(self) -> int:
        return len(self._files)

    def get_file_path(self, index: int) -> str:
        return self._files[index].path

    def get_file_name_content(self, index: int) -> tuple[str, str]:
        file = self._files[index]
        return file.name, file.content

    def get_file_checksum(self, index: int) -> str:
        return create_checksum(self._files[index].content)

    def get_file_data(self, index: int) -> FileData:
        return self._files[index]


class DirectorySource:
    """A local docs tree. Paths are POSIX-style and relative to *root*."""

    def __init__(self, root: Path | str, recursive: bool = True) -> None:
        self.root = Path(root)
        if not self.root.is_dir():
            raise NotADirectoryError(f"Source directory not found: {self.root}")
        self._paths = self._scan(recursive)

    def _scan(self, recursive: bool) -> list[str]:
        iterator = self.root.rglob("*") if recursive else self.root.iterdir()
        paths: list[str] = []
        for item in iterator:
            rel = item.relative_to(self.root)
            if any(part in _SKIP_DIRS for part in rel.parts[:-1]):
                continue
            if item.is_file():
                paths.append(rel.as_posix())
        paths.sort()
        logger.debug("Found %d files under %s", len(paths), self.root)
        return paths

    def __len__(self) -> int:
        return len(self._paths)

    def get_file_path(self, index: int) -> str:
        return self._paths[index]

    def get_file_name_content(self, index: int) -> tuple[str, str]:
        path = self._paths[index]
        content = (self.root / path).read_text(encoding="utf-8", errors="replace")
        return posixpath.basename(path), content

"""Incremental change detection by content checksum."""

from __future__ import annotations

import hashlib
from types import MappingProxyType
from typing import Mapping


def create_checksum(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ChecksumIndex:
    """Immutable ``path -> checksum`` snapshot, read once per training batch."""

    def __init__(self, checksums: Mapping[str, str] | None = None) -> None:
        self._checksums = MappingProxyType(dict(checksums or {}))

    def __len__(self) -> int:
        return len(self._checksums)

    def __contains__(self, path: object) -> bool:
        return path in self._checksums

    def get(self, path: str) -> str | None:
        return self._checksums.get(path)

    def is_unchanged(self, path: str, checksum: str | None) -> bool:
        """True if *path* is stored with exactly *checksum*."""
        return checksum is not None and self._checksums.get(path) == checksum

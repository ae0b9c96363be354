"""Path filtering with include/exclude glob patterns."""

from __future__ import annotations

import fnmatch

from docembed.ingest.formats import is_supported_file_type


def _matches(path: str, pattern: str) -> bool:
    if fnmatch.fnmatch(path, pattern):
        return True
    # "**/x" also matches "x" at the root.
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        if fnmatch.fnmatch(path, pattern):
            return True
    return False


def matches_any(path: str, patterns: list[str]) -> bool:
    return any(_matches(path, p) for p in patterns)


def is_dotfile_path(path: str) -> bool:
    return path.startswith(".") or "/." in path


def should_include_file_with_path(
    path: str,
    include_globs: list[str] | None = None,
    exclude_globs: list[str] | None = None,
) -> bool:
    """Decide whether *path* takes part in training.

    Dotfiles (and anything under a dot directory) and unsupported extensions
    are always excluded. Otherwise the path must match an include glob (when
    any are given) and no exclude glob.
    """
    path = path.lstrip("/")
    if is_dotfile_path(path) or not is_supported_file_type(path):
        return False
    if include_globs and not matches_any(path, include_globs):
        return False
    if exclude_globs and matches_any(path, exclude_globs):
        return False
    return True

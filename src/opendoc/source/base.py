"""Contracts for reading original-language content from version control."""

from __future__ import annotations

import fnmatch
from typing import Iterable, Mapping, Optional, Protocol, Tuple, runtime_checkable


class SourceBackendError(Exception):
    """Raised when the source backend cannot answer a request."""


@runtime_checkable
class SourceBackend(Protocol):
    """Read-only view of a repository at arbitrary references."""

    def get_content_hash(self, ref: str, path: str) -> Optional[str]:
        """Return the content hash of ``path`` at ``ref`` or None when absent."""
        ...

    def get_content(self, ref: str, path: str) -> bytes:
        """Return the raw content of ``path`` at ``ref``."""
        ...

    def list_tracked_paths(
        self,
        ref: str,
        include_dirs: Iterable[str],
        extensions: Iterable[str],
        always_include: Iterable[str] = (),
    ) -> list[str]:
        """Return the paths at ``ref`` selected by the project rules."""
        ...


@runtime_checkable
class BatchSourceBackend(SourceBackend, Protocol):
    """Backend that can fetch hashes and sizes for many paths in one round trip."""

    def get_hashes_and_sizes(
        self, ref: str, paths: Iterable[str]
    ) -> Mapping[str, Tuple[str, int]]:
        """Return ``path -> (hash, size)`` for the requested paths present at ``ref``."""
        ...


def _under_dir(path: str, directory: str) -> bool:
    directory = directory.strip("/")
    if not directory or directory == ".":
        return True
    return path == directory or path.startswith(directory + "/")


def _matches_pattern(path: str, pattern: str) -> bool:
    return path == pattern or fnmatch.fnmatchcase(path, pattern)


def select_tracked_paths(
    paths: Iterable[str],
    include_dirs: Iterable[str],
    extensions: Iterable[str],
    always_include: Iterable[str] = (),
) -> list[str]:
    """Filter ``paths`` with the project selection rules.

    A path is kept when it matches an always-include entry (exact path or
    glob), or when it sits under one of ``include_dirs`` and carries one of
    ``extensions``. Empty ``include_dirs`` or ``extensions`` match everything.

    Args:
        paths: Candidate repository-relative paths.
        include_dirs: Directories whose contents are tracked.
        extensions: Allowed extensions, with or without the leading dot.
        always_include: Paths or glob patterns tracked regardless of the other rules.

    Returns:
        list[str]: Selected paths in input order.
    """
    dirs = [d.strip() for d in include_dirs if d.strip()]
    exts = {e.strip().lstrip(".").lower() for e in extensions if e.strip()}
    patterns = [p.strip() for p in always_include if p.strip()]

    selected: list[str] = []
    for path in paths:
        if any(_matches_pattern(path, pattern) for pattern in patterns):
            selected.append(path)
            continue
        if dirs and not any(_under_dir(path, d) for d in dirs):
            continue
        if exts:
            name = path.rsplit("/", 1)[-1]
            suffix = name.rsplit(".", 1)[-1].lower() if "." in name else ""
            if suffix not in exts:
                continue
        selected.append(path)
    return selected


__all__ = [
    "SourceBackend",
    "BatchSourceBackend",
    "SourceBackendError",
    "select_tracked_paths",
]

"""Resolve the translation status of tracked files."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from opendoc.config.models import ProjectRules
from opendoc.source.base import BatchSourceBackend, SourceBackend, SourceBackendError
from opendoc.state import TranslationStateStore

from .status import FileRecord, classify, extension_of

LOGGER = logging.getLogger(__name__)


class FileStatusResolver:
    """Combine upstream hashes with recorded state into file records.

    The resolver never writes state. Each call reads the state mapping once
    and fetches hashes through the backend's batch primitive when available.
    """

    def __init__(self, backend: SourceBackend, store: TranslationStateStore) -> None:
        self._backend = backend
        self._store = store

    def resolve(
        self,
        paths: Iterable[str],
        source_ref: str,
        state_ref: str,
    ) -> list[FileRecord]:
        """Return records for ``paths`` that exist at ``source_ref``.

        Args:
            paths: Candidate repository-relative paths.
            source_ref: Reference the original documents are read from.
            state_ref: Working reference whose translation state is consulted.

        Returns:
            list[FileRecord]: Records ordered by path.

        Raises:
            StateError: If the translation state cannot be read.
        """
        state = self._store.read(state_ref)
        ordered = sorted(set(paths))
        fetched = self._fetch_hashes(source_ref, ordered)

        records: list[FileRecord] = []
        for path in ordered:
            info = fetched.get(path)
            if info is None:
                continue
            source_hash, size = info
            entry = state.get(path)
            recorded_hash = entry.source_hash if entry is not None else None
            records.append(
                FileRecord(
                    path=path,
                    source_hash=source_hash,
                    size=size,
                    recorded_hash=recorded_hash,
                    status=classify(source_hash, recorded_hash),
                    extension=extension_of(path),
                    last_translated_at=entry.last_translated_at if entry is not None else None,
                )
            )
        return records

    def resolve_project(
        self,
        rules: ProjectRules,
        source_ref: str,
        state_ref: str,
    ) -> list[FileRecord]:
        """List tracked paths using ``rules`` and resolve them."""
        paths = self._backend.list_tracked_paths(
            source_ref,
            rules.include_dir_set(),
            rules.extension_set(),
            rules.always_include_set(),
        )
        return self.resolve(paths, source_ref, state_ref)

    def _fetch_hashes(self, ref: str, paths: list[str]) -> dict[str, Tuple[str, int]]:
        if not paths:
            return {}
        if isinstance(self._backend, BatchSourceBackend):
            try:
                return dict(self._backend.get_hashes_and_sizes(ref, paths))
            except SourceBackendError as exc:
                LOGGER.warning("Batch hash lookup at %s failed, retrying per path: %s", ref, exc)

        fetched: dict[str, Tuple[str, int]] = {}
        for path in paths:
            info = self._fetch_one(ref, path)
            if info is not None:
                fetched[path] = info
        return fetched

    def _fetch_one(self, ref: str, path: str) -> Optional[Tuple[str, int]]:
        try:
            source_hash = self._backend.get_content_hash(ref, path)
            if source_hash is None:
                return None
            size = len(self._backend.get_content(ref, path))
        except (SourceBackendError, OSError) as exc:
            LOGGER.warning("Skipping %s: unable to read it at %s: %s", path, ref, exc)
            return None
        return source_hash, size


__all__ = ["FileStatusResolver"]

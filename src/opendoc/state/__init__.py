"""Translation state persistence for opendoc projects."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Tuple

from pydantic import ValidationError

from .errors import StateError
from .models import DEFAULT_TRANSLATOR_VERSION, StateEntry

LOGGER = logging.getLogger(__name__)

STATE_FILE_SUFFIX = "-translation_state.json"
_UNSAFE_REF_CHARS = re.compile(r'[/\\:*?"<>|]')

_LOCKS: dict[Path, threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


def safe_ref_name(ref: str) -> str:
    """Return ``ref`` with path-unsafe characters replaced by underscores."""
    return _UNSAFE_REF_CHARS.sub("_", ref)


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCKS[key] = lock
        return lock


class TranslationStateStore:
    """Read and update the per-reference translation state of a project.

    Each working reference owns one JSON file in the project root, keyed by
    file path. Updates are read-modify-write cycles that replace the file in
    one step and are serialized per file within the process.
    """

    def __init__(self, root: Path, *, translator_version: str = DEFAULT_TRANSLATOR_VERSION) -> None:
        """Initialize the store for a project checkout.

        Args:
            root: Project root that holds the state files.
            translator_version: Version tag recorded on every upsert.
        """
        self._root = Path(root)
        self._translator_version = translator_version

    @property
    def root(self) -> Path:
        return self._root

    def state_path(self, ref: str) -> Path:
        """Return the state file backing ``ref``.

        Args:
            ref: Working reference (branch name).

        Returns:
            Path: Location of the JSON state file.
        """
        return self._root / f"{safe_ref_name(ref)}{STATE_FILE_SUFFIX}"

    def read(self, ref: str) -> dict[str, StateEntry]:
        """Load the state mapping for ``ref``.

        Args:
            ref: Working reference (branch name).

        Returns:
            dict[str, StateEntry]: Entries keyed by path; empty when no file exists.

        Raises:
            StateError: If the file exists but cannot be read or parsed.
        """
        return self._read_path(self.state_path(ref))

    def upsert_one(self, ref: str, path: str, source_hash: str) -> StateEntry:
        """Record a successful translation of ``path``.

        Args:
            ref: Working reference (branch name).
            path: Translated file path.
            source_hash: Upstream hash the translation was produced from.

        Returns:
            StateEntry: The entry that was written.
        """
        return self.upsert_batch(ref, [(path, source_hash)])[0]

    def upsert_batch(self, ref: str, entries: Iterable[Tuple[str, str]]) -> list[StateEntry]:
        """Record several successful translations with a single write.

        Args:
            ref: Working reference (branch name).
            entries: ``(path, source_hash)`` pairs; later pairs win for repeated paths.

        Returns:
            list[StateEntry]: Entries written, in input order.

        Raises:
            StateError: If the current state cannot be read or the new state cannot be written.
        """
        pending = list(entries)
        if not pending:
            return []

        state_path = self.state_path(ref)
        with _lock_for(state_path):
            mapping = self._read_path(state_path)
            now = datetime.now(timezone.utc)
            written: list[StateEntry] = []
            for path, source_hash in pending:
                entry = StateEntry(
                    path=path,
                    source_hash=source_hash,
                    last_translated_at=now,
                    translator_version=self._translator_version,
                )
                mapping[path] = entry
                written.append(entry)
            self._write_path(state_path, mapping)

        LOGGER.debug("Recorded %d translation(s) in %s", len(written), state_path)
        return written

    def _read_path(self, state_path: Path) -> dict[str, StateEntry]:
        if not state_path.exists():
            return {}
        try:
            data = json.loads(state_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StateError(f"Unable to read translation state {state_path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StateError(f"Invalid translation state data in {state_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise StateError(f"Translation state {state_path} must contain a JSON object.")

        entries: dict[str, StateEntry] = {}
        for path, value in data.items():
            if not isinstance(value, dict):
                raise StateError(f"Invalid state entry for {path} in {state_path}.")
            try:
                entries[path] = StateEntry.model_validate({**value, "path": path})
            except ValidationError as exc:
                raise StateError(f"Invalid state entry for {path}: {exc}") from exc
        return entries

    def _write_path(self, state_path: Path, mapping: dict[str, StateEntry]) -> None:
        payload = {path: entry.model_dump(mode="json") for path, entry in mapping.items()}
        serialized = json.dumps(payload, indent=2, ensure_ascii=False)
        try:
            state_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{state_path.name}.", suffix=".tmp", dir=state_path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(serialized)
                os.replace(tmp_name, state_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StateError(f"Unable to write translation state {state_path}: {exc}") from exc


__all__ = [
    "STATE_FILE_SUFFIX",
    "DEFAULT_TRANSLATOR_VERSION",
    "StateEntry",
    "StateError",
    "TranslationStateStore",
    "safe_ref_name",
]

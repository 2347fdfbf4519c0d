"""Shared fakes for opendoc tests."""

from __future__ import annotations

import asyncio
import hashlib
import subprocess
from pathlib import Path
from typing import Iterable, Optional

import pytest

from opendoc.config import OpenDocConfig
from opendoc.service import TranslationService
from opendoc.source import SourceBackendError, select_tracked_paths
from opendoc.state import TranslationStateStore


def blob_hash(content: bytes) -> str:
    return hashlib.sha1(content).hexdigest()


def git(root: Path, *args: str) -> str:
    completed = subprocess.run(
        [
            "git",
            "-C",
            str(root),
            "-c",
            "user.name=Test",
            "-c",
            "user.email=test@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


def make_repo(root: Path, files: dict[str, str]) -> Path:
    """Create a repository on ``main`` with ``files`` mirrored to ``upstream/main``."""
    root.mkdir(parents=True, exist_ok=True)
    git(root, "init", "-q")
    git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    git(root, "config", "user.name", "Test")
    git(root, "config", "user.email", "test@example.com")
    git(root, "config", "commit.gpgsign", "false")
    for path, content in files.items():
        target = root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    git(root, "add", "-A")
    git(root, "commit", "-q", "-m", "initial")
    git(root, "update-ref", "refs/remotes/upstream/main", "HEAD")
    git(root, "remote", "add", "origin", "https://example.com/fork.git")
    git(root, "remote", "add", "upstream", "https://example.com/project.git")
    return root


def bare_remote(repo: Path, name: str) -> Path:
    """Point remote ``name`` of ``repo`` at a new bare repository next to it."""
    remote = repo.parent / f"{repo.name}-{name}.git"
    git(repo.parent, "init", "-q", "--bare", str(remote))
    git(remote, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "remote", "set-url", name, str(remote))
    return remote


class FakeSourceBackend:
    """In-memory source backend keyed by reference and path."""

    def __init__(self, refs: Optional[dict[str, dict[str, bytes]]] = None) -> None:
        self.refs: dict[str, dict[str, bytes]] = refs or {}
        self.broken: set[str] = set()
        self.hash_calls: list[str] = []

    def put(self, ref: str, path: str, content: str | bytes) -> str:
        data = content.encode("utf-8") if isinstance(content, str) else content
        self.refs.setdefault(ref, {})[path] = data
        return blob_hash(data)

    def get_content_hash(self, ref: str, path: str) -> Optional[str]:
        self.hash_calls.append(path)
        if path in self.broken:
            raise SourceBackendError(f"cannot read {path}")
        content = self.refs.get(ref, {}).get(path)
        return None if content is None else blob_hash(content)

    def get_content(self, ref: str, path: str) -> bytes:
        if path in self.broken:
            raise SourceBackendError(f"cannot read {path}")
        try:
            return self.refs[ref][path]
        except KeyError as exc:
            raise SourceBackendError(f"{path} missing at {ref}") from exc

    def list_tracked_paths(
        self,
        ref: str,
        include_dirs: Iterable[str],
        extensions: Iterable[str],
        always_include: Iterable[str] = (),
    ) -> list[str]:
        return select_tracked_paths(
            sorted(self.refs.get(ref, {})), include_dirs, extensions, always_include
        )


class FakeBatchSourceBackend(FakeSourceBackend):
    """Fake backend that also answers batch hash lookups."""

    def __init__(self, refs: Optional[dict[str, dict[str, bytes]]] = None) -> None:
        super().__init__(refs)
        self.batch_calls = 0
        self.fail_batch = False

    def get_hashes_and_sizes(self, ref: str, paths: Iterable[str]) -> dict[str, tuple[str, int]]:
        self.batch_calls += 1
        if self.fail_batch:
            raise SourceBackendError("ls-tree failed")
        files = self.refs.get(ref, {})
        return {
            path: (blob_hash(files[path]), len(files[path])) for path in paths if path in files
        }


class FakeTextTranslator:
    """Prefix translations with a marker; fail for texts containing a trigger."""

    def __init__(self, *, fail_on: Iterable[str] = (), delay: float = 0.0) -> None:
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def translate(self, system_prompt: str, text: str) -> str:
        self.calls.append((system_prompt, text))
        if self.delay:
            await asyncio.sleep(self.delay)
        if any(trigger in text for trigger in self.fail_on):
            raise RuntimeError(f"backend refused: {text.strip()[:20]}")
        return f"[zh] {text}"


class OfflineTranslationService(TranslationService):
    """Service wired to ``FakeTextTranslator`` so CLI runs never reach the network."""

    def __init__(self, config: OpenDocConfig) -> None:
        super().__init__(config, text_backend=FakeTextTranslator(fail_on={"boom"}))


@pytest.fixture
def backend() -> FakeSourceBackend:
    return FakeSourceBackend()


@pytest.fixture
def batch_backend() -> FakeBatchSourceBackend:
    return FakeBatchSourceBackend()


@pytest.fixture
def store(tmp_path: Path) -> TranslationStateStore:
    return TranslationStateStore(tmp_path)


@pytest.fixture
def text_translator() -> FakeTextTranslator:
    return FakeTextTranslator()

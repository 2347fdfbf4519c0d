"""Source backend that shells out to the ``git`` executable."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from .base import SourceBackendError, select_tracked_paths

LOGGER = logging.getLogger(__name__)

PREFERRED_UPSTREAM_BRANCHES = ("main", "master")


@dataclass(slots=True)
class WorkingTreeStatus:
    """Changes in the working checkout, grouped the way ``git status`` reports them.

    Attributes:
        modified: Paths modified in the index or the working tree.
        added: Paths newly added to the index.
        deleted: Paths deleted in the index or the working tree.
        renamed: Renames rendered as ``"old -> new"``.
        staged: Paths with any staged change.
        untracked: Paths git does not track yet.
    """

    modified: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    renamed: list[str] = field(default_factory=list)
    staged: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (
            self.modified
            or self.added
            or self.deleted
            or self.renamed
            or self.staged
            or self.untracked
        )


def _decode(data: bytes) -> str:
    """Decode git output, keeping undecodable bytes as surrogate escapes.

    Paths decoded this way round-trip unchanged when passed back to git as
    arguments, because subprocess encodes them with the same error handler.
    """
    return data.decode("utf-8", errors="surrogateescape")


class GitSourceBackend:
    """Read blobs, hashes, and branch metadata from a local git checkout."""

    def __init__(
        self,
        root: Path,
        *,
        git_executable: str = "git",
        timeout_seconds: float = 120.0,
    ) -> None:
        """Initialize the backend for the repository at ``root``.

        Args:
            root: Working checkout of the project.
            git_executable: Name or path of the git binary.
            timeout_seconds: Upper bound for a single git invocation.
        """
        self._root = Path(root)
        self._git = git_executable
        self._timeout = timeout_seconds

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------ #
    # Source backend contract                                            #
    # ------------------------------------------------------------------ #

    def get_content_hash(self, ref: str, path: str) -> Optional[str]:
        """Return the blob id of ``path`` at ``ref``, or None when it does not exist."""
        completed = self._run("rev-parse", "--verify", "--quiet", f"{ref}:{path}", check=False)
        if completed.returncode != 0:
            return None
        value = _decode(completed.stdout).strip()
        return value or None

    def get_content(self, ref: str, path: str) -> bytes:
        """Return the raw blob content of ``path`` at ``ref``."""
        return self._run("cat-file", "blob", f"{ref}:{path}").stdout

    def get_hashes_and_sizes(self, ref: str, paths: Iterable[str]) -> dict[str, Tuple[str, int]]:
        """Return ``path -> (blob id, size)`` for requested paths using one ``ls-tree`` call."""
        wanted = set(paths)
        if not wanted:
            return {}

        output = _decode(self._run("ls-tree", "-r", "--long", "-z", ref).stdout)
        found: dict[str, Tuple[str, int]] = {}
        for entry in output.split("\0"):
            if not entry:
                continue
            meta, _, path = entry.partition("\t")
            if path not in wanted:
                continue
            fields = meta.split()
            if len(fields) != 4 or fields[1] != "blob":
                continue
            try:
                size = int(fields[3])
            except ValueError:
                continue
            found[path] = (fields[2], size)
        return found

    def list_tracked_paths(
        self,
        ref: str,
        include_dirs: Iterable[str],
        extensions: Iterable[str],
        always_include: Iterable[str] = (),
    ) -> list[str]:
        """Return files at ``ref`` selected by the project rules."""
        output = _decode(self._run("ls-tree", "-r", "--name-only", "-z", ref).stdout)
        all_paths = [path for path in output.split("\0") if path]
        return select_tracked_paths(all_paths, include_dirs, extensions, always_include)

    # ------------------------------------------------------------------ #
    # Repository metadata                                                #
    # ------------------------------------------------------------------ #

    def is_repository(self) -> bool:
        """Return True when the root lies inside a git work tree."""
        try:
            completed = self._run("rev-parse", "--is-inside-work-tree", check=False)
        except SourceBackendError:
            return False
        return completed.returncode == 0 and completed.stdout.strip() == b"true"

    def remotes(self) -> dict[str, str]:
        """Return the fetch URL of every configured remote."""
        output = _decode(self._run("remote", "-v").stdout)
        result: dict[str, str] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[2] == "(fetch)":
                result[parts[0]] = parts[1]
        return result

    def current_branch(self) -> str:
        """Return the checked-out branch name (``HEAD`` when detached)."""
        return _decode(self._run("rev-parse", "--abbrev-ref", "HEAD").stdout).strip()

    def upstream_branches(self, remote: str = "upstream") -> list[str]:
        """Return remote-tracking branches of ``remote`` such as ``upstream/main``."""
        output = _decode(
            self._run(
                "for-each-ref", "--format=%(refname:short)", f"refs/remotes/{remote}"
            ).stdout
        )
        branches = []
        for line in output.splitlines():
            name = line.strip()
            if not name or name == remote or name.endswith("/HEAD"):
                continue
            branches.append(name)
        return branches

    def default_upstream_branch(self, remote: str = "upstream") -> str:
        """Pick the branch translations should follow on ``remote``.

        ``main`` wins over ``master``; otherwise the first branch is used.

        Raises:
            SourceBackendError: If ``remote`` has no remote-tracking branches.
        """
        branches = self.upstream_branches(remote)
        for preferred in PREFERRED_UPSTREAM_BRANCHES:
            candidate = f"{remote}/{preferred}"
            if candidate in branches:
                return candidate
        if branches:
            return branches[0]
        raise SourceBackendError(f"No branches found for remote '{remote}'.")

    def fetch(self, remote: str = "upstream") -> None:
        LOGGER.info("Fetching %s in %s", remote, self._root)
        self._run("fetch", "--prune", remote)

    # ------------------------------------------------------------------ #
    # Working checkout                                                   #
    # ------------------------------------------------------------------ #

    def status(self) -> WorkingTreeStatus:
        """Summarize uncommitted changes in the checkout."""
        output = _decode(
            self._run("status", "--porcelain=v1", "-z", "--untracked-files=all").stdout
        )
        entries = output.split("\0")
        result = WorkingTreeStatus()
        index = 0
        while index < len(entries):
            entry = entries[index]
            index += 1
            if len(entry) < 4:
                continue
            code, path = entry[:2], entry[3:]
            if code == "??":
                result.untracked.append(path)
                continue
            staged_code = code[0]
            if staged_code in "RC":
                # -z lists the source of a rename or copy as the next entry.
                source = entries[index] if index < len(entries) else ""
                index += 1
                if staged_code == "R":
                    result.renamed.append(f"{source} -> {path}")
            if staged_code not in " ?!":
                result.staged.append(path)
            if staged_code == "A":
                result.added.append(path)
            if "D" in code:
                result.deleted.append(path)
            if "M" in code:
                result.modified.append(path)
        return result

    def checkout(self, branch: str) -> None:
        """Switch the checkout to ``branch``.

        Raises:
            SourceBackendError: If the checkout has uncommitted changes or git fails.
        """
        if not self.status().clean:
            raise SourceBackendError(
                "The checkout has uncommitted changes; commit or discard them first."
            )
        LOGGER.info("Checking out %s in %s", branch, self._root)
        self._run("checkout", branch)

    def commit(self, message: str, paths: Sequence[str] = ()) -> str:
        """Stage ``paths`` (everything when empty) and commit them.

        Returns:
            str: Id of the new commit.

        Raises:
            SourceBackendError: If there is nothing to commit or git fails.
        """
        if not message.strip():
            raise SourceBackendError("A commit message is required.")
        if paths:
            self._run("add", "--", *paths)
        else:
            self._run("add", "--all")
        staged = self._run("diff", "--cached", "--quiet", check=False)
        if staged.returncode == 0:
            raise SourceBackendError("Nothing to commit.")
        self._run("commit", "-q", "-m", message)
        commit_id = _decode(self._run("rev-parse", "HEAD").stdout).strip()
        LOGGER.info("Committed %s in %s", commit_id[:12], self._root)
        return commit_id

    def push(self, remote: str = "origin", branch: Optional[str] = None) -> None:
        """Push ``branch`` (the current branch when omitted) to ``remote``."""
        target = branch or self.current_branch()
        LOGGER.info("Pushing %s to %s", target, remote)
        self._run("push", remote, target)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[bytes]:
        command = [self._git, "-C", str(self._root), *args]
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise SourceBackendError(f"Unable to run {' '.join(command)}: {exc}") from exc

        if check and completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise SourceBackendError(f"git {' '.join(args)} failed: {stderr}")
        return completed


__all__ = ["GitSourceBackend", "WorkingTreeStatus"]

"""Project-level orchestration of status resolution and translation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

from opendoc.config import ConfigError, ConfigManager
from opendoc.config.models import (
    DEFAULT_UPSTREAM_BRANCH,
    OpenDocConfig,
    ProjectRemotes,
    ProjectSettings,
)
from opendoc.source import (
    GitSourceBackend,
    SourceBackend,
    SourceBackendError,
    WorkingTree,
    WorkingTreeStatus,
)
from opendoc.state import TranslationStateStore
from opendoc.tracking import (
    FileRecord,
    FileStatusResolver,
    StatusStats,
    TreeNode,
    build_tree,
    filter_tree,
    status_stats,
)
from opendoc.tracking.tree import RecordPredicate
from opendoc.translation import (
    BatchProgress,
    ChatCompletionClient,
    DocumentTranslator,
    TextTranslator,
    TranslationResult,
    TranslationTask,
    run_batch,
)
from opendoc.translation.scheduler import ProgressCallback

LOGGER = logging.getLogger(__name__)


class ProjectError(Exception):
    """Raised when a project cannot be opened, registered, or operated on."""


@dataclass(slots=True)
class ProjectContext:
    """Everything an operation needs to work on one project.

    Attributes:
        project: Registered project settings.
        backend: Read-only access to upstream content.
        worktree: Writable working checkout receiving translations.
        store: Translation state store for the checkout.
        source_ref: Reference the original documents are read from.
        working_ref: Reference whose translation state is read and updated.
    """

    project: ProjectSettings
    backend: SourceBackend
    worktree: WorkingTree
    store: TranslationStateStore
    source_ref: str
    working_ref: str


@dataclass(slots=True)
class FileComparison:
    """Original text next to the current translation of a file."""

    original: str
    translated: str
    exists: bool


@dataclass(slots=True)
class BatchTranslationOutcome:
    """Results of a batch translation.

    Attributes:
        results: One result per task, in scheduler order.
        progress: Aggregate counts and failures.
        committed: Paths recorded in the translation state.
        skipped: Requested paths that do not exist at the source reference.
    """

    results: list[TranslationResult]
    progress: BatchProgress
    committed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class TranslationService:
    """Resolve statuses and run translations for registered projects."""

    def __init__(
        self,
        config: OpenDocConfig,
        *,
        text_backend: Optional[TextTranslator] = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Effective configuration.
            text_backend: Translator used instead of a ``ChatCompletionClient``
                built from ``config.llm``.
        """
        self._config = config
        self._text_backend = text_backend

    @property
    def config(self) -> OpenDocConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Projects                                                           #
    # ------------------------------------------------------------------ #

    def open_project(self, key: str, *, source_ref: Optional[str] = None) -> ProjectContext:
        """Build a context for the registered project ``key`` (id or name).

        Raises:
            ProjectError: If the project is unknown or its checkout is not a git repository.
        """
        project = self._config.find_project(key)
        if project is None:
            raise ProjectError(f"Unknown project: {key}")

        root = Path(project.path)
        backend = GitSourceBackend(root)
        if not root.is_dir() or not backend.is_repository():
            raise ProjectError(f"Project checkout is not a git repository: {root}")
        try:
            working_ref = backend.current_branch()
        except SourceBackendError as exc:
            raise ProjectError(f"Unable to read the current branch of {root}: {exc}") from exc

        return ProjectContext(
            project=project,
            backend=backend,
            worktree=WorkingTree(root),
            store=TranslationStateStore(root),
            source_ref=source_ref or project.upstream_branch,
            working_ref=working_ref,
        )

    @staticmethod
    def register_project(path: Path) -> ProjectSettings:
        """Describe the checkout at ``path`` as a new project.

        The checkout must be a git repository with ``origin`` and ``upstream``
        remotes. Persisting the returned settings is up to the caller.

        Raises:
            ProjectError: If the checkout does not qualify.
        """
        root = Path(path).expanduser().resolve()
        backend = GitSourceBackend(root)
        if not root.is_dir() or not backend.is_repository():
            raise ProjectError(f"Not a git repository: {root}")
        try:
            remotes = backend.remotes()
        except SourceBackendError as exc:
            raise ProjectError(f"Unable to list remotes of {root}: {exc}") from exc
        for required in ("origin", "upstream"):
            if required not in remotes:
                raise ProjectError(f"Repository {root} has no '{required}' remote.")

        try:
            upstream_branch = backend.default_upstream_branch()
        except SourceBackendError:
            LOGGER.info("No upstream branches fetched yet in %s; using defaults", root)
            upstream_branch = DEFAULT_UPSTREAM_BRANCH

        return ProjectSettings(
            id=uuid.uuid4().hex,
            name=root.name or "project",
            path=str(root),
            remotes=ProjectRemotes(origin=remotes["origin"], upstream=remotes["upstream"]),
            upstream_branch=upstream_branch,
        )

    # ------------------------------------------------------------------ #
    # Repository                                                         #
    # ------------------------------------------------------------------ #

    def fetch_upstream(self, context: ProjectContext) -> list[str]:
        """Fetch the ``upstream`` remote and return its remote-tracking branches.

        Raises:
            SourceBackendError: If git cannot fetch.
        """
        git = self._git(context)
        git.fetch("upstream")
        return git.upstream_branches("upstream")

    def upstream_branches(self, context: ProjectContext) -> list[str]:
        return self._git(context).upstream_branches("upstream")

    def set_upstream_branch(
        self, context: ProjectContext, branch: str, manager: ConfigManager
    ) -> ProjectContext:
        """Persist ``branch`` as the project's source reference.

        Args:
            context: Project to update.
            branch: Remote-tracking branch such as ``upstream/next``.
            manager: Configuration store receiving the update.

        Returns:
            ProjectContext: A context reading from ``branch``.

        Raises:
            ProjectError: If ``branch`` is not a fetched upstream branch or the
                configuration cannot be updated.
        """
        try:
            known = self.upstream_branches(context)
        except SourceBackendError as exc:
            raise ProjectError(f"Unable to list upstream branches: {exc}") from exc
        if branch not in known:
            listed = ", ".join(known) or "none (run `opendoc fetch` first)"
            raise ProjectError(f"Unknown upstream branch {branch}; available: {listed}")
        try:
            project = manager.update_project(context.project.id, {"upstream_branch": branch})
        except ConfigError as exc:
            raise ProjectError(str(exc)) from exc
        LOGGER.info("Project %s now follows %s", project.name, branch)
        return replace(context, project=project, source_ref=branch)

    def switch_working_branch(self, context: ProjectContext, branch: str) -> ProjectContext:
        """Check out ``branch`` and return a context recording translations there.

        Raises:
            ProjectError: If the checkout has uncommitted changes or git fails.
        """
        try:
            self._git(context).checkout(branch)
        except SourceBackendError as exc:
            raise ProjectError(f"Unable to switch to {branch}: {exc}") from exc
        return replace(context, working_ref=branch)

    def working_tree_status(self, context: ProjectContext) -> WorkingTreeStatus:
        return self._git(context).status()

    def commit_changes(
        self, context: ProjectContext, message: str, paths: Iterable[str] = ()
    ) -> str:
        """Stage ``paths`` (all changes when empty) and commit them.

        Returns:
            str: Id of the new commit.

        Raises:
            SourceBackendError: If there is nothing to commit or git fails.
        """
        return self._git(context).commit(message, list(paths))

    def push_changes(self, context: ProjectContext) -> None:
        """Push the working branch to ``origin``."""
        self._git(context).push("origin", context.working_ref)

    # ------------------------------------------------------------------ #
    # Status                                                             #
    # ------------------------------------------------------------------ #

    def file_records(self, context: ProjectContext) -> list[FileRecord]:
        """Resolve every tracked file of the project.

        Args:
            context: Project to resolve.

        Returns:
            list[FileRecord]: One record per file present at ``context.source_ref``.

        Raises:
            SourceBackendError: If the tracked files cannot be listed.
            StateError: If the translation state of ``context.working_ref`` is unreadable.
        """
        resolver = FileStatusResolver(context.backend, context.store)
        return resolver.resolve_project(
            context.project.rules, context.source_ref, context.working_ref
        )

    def file_tree(
        self,
        context: ProjectContext,
        predicate: Optional[RecordPredicate] = None,
    ) -> list[TreeNode]:
        """Build the status tree, optionally pruned to files matching ``predicate``.

        Directories left without matching files are dropped from the result.
        """
        tree = build_tree(self.file_records(context))
        if predicate is None:
            return tree
        return filter_tree(tree, predicate)

    def status_stats(self, context: ProjectContext) -> StatusStats:
        """Return per-status counts over all tracked files of the project."""
        return status_stats(self.file_records(context))

    def file_comparison(self, context: ProjectContext, path: str) -> FileComparison:
        """Return the upstream text of ``path`` and its current translation."""
        try:
            original = context.backend.get_content(context.source_ref, path)
        except SourceBackendError as exc:
            raise ProjectError(f"Unable to read {path} at {context.source_ref}: {exc}") from exc
        exists = context.worktree.exists(path)
        return FileComparison(
            original=original.decode("utf-8", errors="replace"),
            translated=context.worktree.read(path) if exists else "",
            exists=exists,
        )

    # ------------------------------------------------------------------ #
    # Translation                                                        #
    # ------------------------------------------------------------------ #

    def resolve_prompt(self, context: ProjectContext, prompt: Optional[str] = None) -> str:
        """Pick the system prompt: explicit argument, then project prompt, then templates."""
        if prompt and prompt.strip():
            return prompt
        if context.project.prompt.strip():
            return context.project.prompt
        return self._config.default_prompt()

    async def translate_file(
        self,
        context: ProjectContext,
        path: str,
        prompt: Optional[str] = None,
    ) -> TranslationResult:
        """Translate one file, write it, and record it on success.

        Raises:
            ProjectError: If ``path`` does not exist at the source reference.
            StateError: If the translation state cannot be updated.
        """
        task = self._build_task(context, path)
        if task is None:
            raise ProjectError(f"{path} does not exist at {context.source_ref}")
        if isinstance(task, TranslationResult):
            return task

        async with self._translator(context, prompt) as translator:
            try:
                result = await translator(task)
            except Exception as exc:
                LOGGER.warning("Translation of %s failed: %s", path, exc)
                result = TranslationResult(path=path, success=False, error=str(exc) or repr(exc))

        result = self._write_translation(context, result)
        if result.success:
            context.store.upsert_one(context.working_ref, path, task.source_hash)
        return result

    async def batch_translate(
        self,
        context: ProjectContext,
        paths: Iterable[str],
        prompt: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchTranslationOutcome:
        """Translate ``paths`` with the configured concurrency and commit successes.

        Paths missing upstream are skipped. Paths whose content cannot be read
        yield failed results. The state is written once, for exactly the
        successful results.

        Raises:
            StateError: If the translation state cannot be updated.
        """
        tasks: list[TranslationTask] = []
        early_failures: list[TranslationResult] = []
        skipped: list[str] = []
        for path in dict.fromkeys(paths):
            built = self._build_task(context, path)
            if built is None:
                skipped.append(path)
            elif isinstance(built, TranslationResult):
                early_failures.append(built)
            else:
                tasks.append(built)

        llm = self._config.llm
        async with self._translator(context, prompt) as translator:
            results = await run_batch(
                tasks,
                translator,
                llm.concurrency,
                on_progress,
                wave_delay=llm.batch_delay_seconds,
                cancel_event=cancel_event,
            )

        results = [self._write_translation(context, result) for result in results]
        results.extend(early_failures)

        hashes = {task.path: task.source_hash for task in tasks}
        commits = [(result.path, hashes[result.path]) for result in results if result.success]
        context.store.upsert_batch(context.working_ref, commits)

        progress = BatchProgress(total=len(results))
        for result in results:
            progress.record(result)
        LOGGER.info(
            "Batch translation finished: %d succeeded, %d failed, %d skipped",
            len(commits),
            progress.failed,
            len(skipped),
        )
        return BatchTranslationOutcome(
            results=results,
            progress=progress,
            committed=[path for path, _ in commits],
            skipped=skipped,
        )

    # ------------------------------------------------------------------ #
    # Translation backend                                                #
    # ------------------------------------------------------------------ #

    async def check_llm_connection(self) -> bool:
        """Return True when the configured backend answers a minimal completion."""
        async with ChatCompletionClient(self._config.llm) as client:
            return await client.test_connection()

    async def available_models(self) -> list[str]:
        """List model identifiers offered by the configured backend.

        Raises:
            TranslationBackendError: If the ``/models`` request fails.
        """
        async with ChatCompletionClient(self._config.llm) as client:
            return await client.list_models()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _git(context: ProjectContext) -> GitSourceBackend:
        if isinstance(context.backend, GitSourceBackend):
            return context.backend
        return GitSourceBackend(Path(context.project.path))

    def _build_task(
        self, context: ProjectContext, path: str
    ) -> TranslationTask | TranslationResult | None:
        try:
            source_hash = context.backend.get_content_hash(context.source_ref, path)
            if source_hash is None:
                return None
            content = context.backend.get_content(context.source_ref, path)
        except (SourceBackendError, OSError) as exc:
            LOGGER.warning("Unable to read %s at %s: %s", path, context.source_ref, exc)
            return TranslationResult(path=path, success=False, error=str(exc))
        return TranslationTask(
            path=path,
            content=content.decode("utf-8", errors="replace"),
            source_hash=source_hash,
        )

    def _write_translation(
        self, context: ProjectContext, result: TranslationResult
    ) -> TranslationResult:
        if not result.success:
            return result
        try:
            context.worktree.write(result.path, result.translated_content)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unable to write translation of %s: %s", result.path, exc)
            return result.model_copy(update={"success": False, "error": f"write failed: {exc}"})
        return result

    @asynccontextmanager
    async def _translator(
        self, context: ProjectContext, prompt: Optional[str]
    ) -> AsyncIterator[DocumentTranslator]:
        resolved = self.resolve_prompt(context, prompt)
        segment_concurrency = self._config.llm.segment_concurrency
        if self._text_backend is not None:
            yield DocumentTranslator(
                self._text_backend, resolved, segment_concurrency=segment_concurrency
            )
            return
        async with ChatCompletionClient(self._config.llm) as client:
            yield DocumentTranslator(client, resolved, segment_concurrency=segment_concurrency)


__all__ = [
    "BatchTranslationOutcome",
    "FileComparison",
    "ProjectContext",
    "ProjectError",
    "TranslationService",
]

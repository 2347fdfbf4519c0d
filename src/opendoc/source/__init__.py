"""Source backends that expose original-language content."""

from .base import BatchSourceBackend, SourceBackend, SourceBackendError, select_tracked_paths
from .git import GitSourceBackend, WorkingTreeStatus
from .worktree import WorkingTree

__all__ = [
    "BatchSourceBackend",
    "GitSourceBackend",
    "SourceBackend",
    "SourceBackendError",
    "WorkingTree",
    "WorkingTreeStatus",
    "select_tracked_paths",
]

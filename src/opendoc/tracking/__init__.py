"""Change tracking: status classification, resolution, and tree views."""

from .resolver import FileStatusResolver
from .status import (
    FileRecord,
    FileStatus,
    StatusStats,
    classify,
    extension_of,
    files_to_translate,
    status_stats,
)
from .tree import FileFilter, TreeNode, build_tree, filter_tree, iter_files

__all__ = [
    "FileFilter",
    "FileRecord",
    "FileStatus",
    "FileStatusResolver",
    "StatusStats",
    "TreeNode",
    "build_tree",
    "classify",
    "extension_of",
    "files_to_translate",
    "filter_tree",
    "iter_files",
    "status_stats",
]

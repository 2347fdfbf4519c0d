"""Hierarchical views over resolved file records."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from .status import FileRecord, FileStatus

LOGGER = logging.getLogger(__name__)

RecordPredicate = Callable[[FileRecord], bool]


class TreeNode(BaseModel):
    """Directory or file node of a file tree.

    Attributes:
        name: Last path component.
        path: Full path; a child's path is its parent's path joined with its name.
        is_file: Whether the node is a leaf.
        children: Ordered children for directories, None for files.
        record: Resolved record for files, None for directories.
    """

    name: str
    path: str
    is_file: bool
    children: Optional[List[TreeNode]] = None
    record: Optional[FileRecord] = None


class FileFilter(BaseModel):
    """Standard record predicate; empty criteria match every record.

    Attributes:
        statuses: Allowed statuses.
        extensions: Allowed extensions, without the dot.
        min_size: Inclusive lower size bound in bytes.
        max_size: Inclusive upper size bound in bytes.
        search: Case-insensitive substring of the path or file name.
    """

    statuses: Set[FileStatus] = Field(default_factory=set)
    extensions: Set[str] = Field(default_factory=set)
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    search: Optional[str] = None

    @field_validator("extensions")
    @classmethod
    def _normalize_extensions(cls, value: Set[str]) -> Set[str]:
        return {ext.strip().lstrip(".").lower() for ext in value if ext.strip()}

    def __call__(self, record: FileRecord) -> bool:
        if self.statuses and record.status not in self.statuses:
            return False
        if self.extensions and record.extension not in self.extensions:
            return False
        if self.min_size is not None and record.size < self.min_size:
            return False
        if self.max_size is not None and record.size > self.max_size:
            return False
        needle = (self.search or "").strip().lower()
        if needle and needle not in record.path.lower() and needle not in record.name.lower():
            return False
        return True


def _sort_key(node: TreeNode) -> tuple[bool, str, str]:
    return (node.is_file, node.name.casefold(), node.name)


def _sort_nodes(nodes: List[TreeNode]) -> None:
    nodes.sort(key=_sort_key)
    for node in nodes:
        if node.children:
            _sort_nodes(node.children)


def build_tree(records: Iterable[FileRecord]) -> list[TreeNode]:
    """Fold flat records into an ordered tree.

    Directories precede files at every level; names compare case-insensitively
    with the exact name breaking ties.
    """
    roots: list[TreeNode] = []
    directories: dict[str, TreeNode] = {}
    files: set[str] = set()

    for record in records:
        parts = [part for part in record.path.split("/") if part]
        if not parts:
            continue
        if record.path in files:
            LOGGER.debug("Ignoring duplicate record for %s", record.path)
            continue

        siblings = roots
        current = ""
        conflict = False
        for part in parts[:-1]:
            current = f"{current}/{part}" if current else part
            if current in files:
                conflict = True
                break
            directory = directories.get(current)
            if directory is None:
                directory = TreeNode(name=part, path=current, is_file=False, children=[])
                directories[current] = directory
                siblings.append(directory)
            siblings = directory.children  # type: ignore[assignment]

        leaf_path = f"{current}/{parts[-1]}" if current else parts[-1]
        if conflict or leaf_path in directories:
            LOGGER.warning("Skipping %s: path clashes with another tracked entry", record.path)
            continue
        siblings.append(TreeNode(name=parts[-1], path=leaf_path, is_file=True, record=record))
        files.add(leaf_path)

    _sort_nodes(roots)
    return roots


def filter_tree(nodes: Iterable[TreeNode], predicate: RecordPredicate) -> list[TreeNode]:
    """Return a new tree holding only files accepted by ``predicate``.

    Directories without surviving descendants are dropped. The input tree is
    left untouched.
    """
    result: list[TreeNode] = []
    for node in nodes:
        if node.is_file:
            if node.record is not None and predicate(node.record):
                result.append(node.model_copy())
            continue
        children = filter_tree(node.children or [], predicate)
        if children:
            result.append(
                TreeNode(name=node.name, path=node.path, is_file=False, children=children)
            )
    return result


def iter_files(nodes: Iterable[TreeNode]) -> Iterator[FileRecord]:
    """Yield file records in display order."""
    for node in nodes:
        if node.is_file:
            if node.record is not None:
                yield node.record
        else:
            yield from iter_files(node.children or [])


TreeNode.model_rebuild()

__all__ = ["TreeNode", "FileFilter", "RecordPredicate", "build_tree", "filter_tree", "iter_files"]

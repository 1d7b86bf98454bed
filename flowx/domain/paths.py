"""Materialized folder paths.

A folder's ``path`` is ``/`` followed by its ancestor names and its own
name, joined by ``/``. Renaming or moving a folder changes the path of
the folder, of every descendant and the ``folder_path`` stored on their
projects. That cascade is split into two phases:

1. ``plan_relocation`` computes every rewrite from one read of
   the folder and project sets (pure, no side effects);
2. the caller applies the resulting ``PathChangePlan`` in one step.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flowx.domain.errors import InvariantViolation, NotFoundError

SEPARATOR = "/"


def build_path(parent_path: Optional[str], name: str) -> str:
    """Path of a folder called ``name`` under ``parent_path`` (None for root)."""
    if not parent_path or parent_path == SEPARATOR:
        return f"{SEPARATOR}{name}"
    return f"{parent_path}{SEPARATOR}{name}"


def calculate_depth(path: str) -> int:
    """Number of non-empty segments; ``/`` is depth 0."""
    return len([segment for segment in path.split(SEPARATOR) if segment])


def parent_path_of(path: str) -> str:
    head = path.rsplit(SEPARATOR, 1)[0]
    return head or SEPARATOR


def is_descendant_path(path: str, ancestor_path: str) -> bool:
    return path.startswith(ancestor_path + SEPARATOR)


def rewrite_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Swap ``old_prefix`` for ``new_prefix`` at the start of ``path``."""
    if path != old_prefix and not is_descendant_path(path, old_prefix):
        raise ValueError(f"{path!r} is not under {old_prefix!r}")
    return new_prefix + path[len(old_prefix):]


def ancestors_of(folders_by_id: Dict[str, Any], folder_id: str) -> List[Any]:
    """Ancestor chain of a folder, root first."""
    chain: List[Any] = []
    seen = {folder_id}
    folder = folders_by_id.get(folder_id)
    if folder is None:
        raise NotFoundError(f"Folder not found: {folder_id}")
    parent_id = folder.parent_id
    while parent_id is not None:
        if parent_id in seen:
            raise InvariantViolation(f"Folder {folder_id} is its own ancestor")
        seen.add(parent_id)
        parent = folders_by_id.get(parent_id)
        if parent is None:
            break
        chain.append(parent)
        parent_id = parent.parent_id
    chain.reverse()
    return chain


def expected_path(folders_by_id: Dict[str, Any], folder: Any) -> str:
    """Path derived from the live chain of ancestor names."""
    names = [ancestor.name for ancestor in ancestors_of(folders_by_id, folder.id)]
    names.append(folder.name)
    return SEPARATOR + SEPARATOR.join(names)


def find_inconsistent_paths(folders: Iterable[Any]) -> List[str]:
    """Ids of non-deleted folders whose path or depth disagree with their ancestors."""
    folders = list(folders)
    by_id = {folder.id: folder for folder in folders}
    broken = []
    for folder in folders:
        if folder.is_deleted:
            continue
        if folder.path != expected_path(by_id, folder) or folder.depth != calculate_depth(folder.path):
            broken.append(folder.id)
    return broken


@dataclass(frozen=True)
class PathRewrite:
    id: str
    old_path: str
    new_path: str

    @property
    def new_depth(self) -> int:
        return calculate_depth(self.new_path)


@dataclass(frozen=True)
class ProjectPathRewrite:
    id: str
    old_path: Optional[str]
    new_path: str


@dataclass(frozen=True)
class PathChangePlan:
    """Every path rewrite caused by renaming or moving one folder."""

    folder_id: str
    old_path: str
    new_path: str
    folders: Tuple[PathRewrite, ...]
    projects: Tuple[ProjectPathRewrite, ...]

    @property
    def is_noop(self) -> bool:
        return self.old_path == self.new_path

    @property
    def max_depth(self) -> int:
        return max(rewrite.new_depth for rewrite in self.folders)

    def folder_paths(self) -> Dict[str, str]:
        return {rewrite.id: rewrite.new_path for rewrite in self.folders}


def plan_path_change(
    folders: Iterable[Any],
    projects: Iterable[Any],
    folder_id: str,
    new_path: str,
) -> PathChangePlan:
    """Compute the rewrites moving ``folder_id`` (and its subtree) to ``new_path``.

    Soft-deleted descendants are rewritten too, so restoring them later
    yields a path consistent with the live tree.
    """
    folders = list(folders)
    target = next((folder for folder in folders if folder.id == folder_id), None)
    if target is None:
        raise NotFoundError(f"Folder not found: {folder_id}")

    old_path = target.path
    rewrites = [PathRewrite(target.id, old_path, new_path)]
    for folder in folders:
        if folder.id != target.id and is_descendant_path(folder.path, old_path):
            rewrites.append(
                PathRewrite(folder.id, folder.path, rewrite_prefix(folder.path, old_path, new_path))
            )

    new_paths = {rewrite.id: rewrite.new_path for rewrite in rewrites}
    project_rewrites = [
        ProjectPathRewrite(project.id, project.folder_path, new_paths[project.folder_id])
        for project in projects
        if project.folder_id in new_paths and project.folder_path != new_paths[project.folder_id]
    ]
    return PathChangePlan(
        folder_id=folder_id,
        old_path=old_path,
        new_path=new_path,
        folders=tuple(rewrites),
        projects=tuple(project_rewrites),
    )


def plan_relocation(
    folders: Iterable[Any],
    projects: Iterable[Any],
    folder_id: str,
    new_name: Optional[str] = None,
    new_parent_id: Any = None,
    move: bool = False,
) -> PathChangePlan:
    """Plan a rename and/or move of ``folder_id``.

    ``move`` says whether ``new_parent_id`` applies (None then means root).
    A new parent that is the folder itself or one of its descendants is
    refused; parent existence and permissions are the caller's concern.
    """
    folders = list(folders)
    by_id = {folder.id: folder for folder in folders}
    target = by_id.get(folder_id)
    if target is None:
        raise NotFoundError(f"Folder not found: {folder_id}")

    parent_id = new_parent_id if move else target.parent_id
    parent_path = None
    if parent_id is not None:
        parent = by_id.get(parent_id)
        if parent is None:
            raise NotFoundError(f"Parent folder not found: {parent_id}")
        if parent.id == target.id or is_descendant_path(parent.path, target.path):
            raise InvariantViolation("A folder cannot be moved into itself or one of its subfolders")
        parent_path = parent.path

    name = new_name if new_name is not None else target.name
    return plan_path_change(folders, projects, folder_id, build_path(parent_path, name))

"""Folder Hierarchy Manager.

Optimistic folder collection that enforces the hierarchy rules before
anything reaches the remote store: client and server name rules, sibling
uniqueness, parent permissions, the depth limit, acyclic moves and the
delete/restore guards. A rename or move stages the new path of the
folder, of every descendant and of the affected projects in one step.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from flowx.application.optimistic import OptimisticCollection, is_temporary_id
from flowx.domain.entities import DEFAULT_FOLDER_COLOR, Folder, Project
from flowx.domain.errors import InvariantViolation, ValidationError
from flowx.domain.paths import (
    PathChangePlan,
    ancestors_of,
    build_path,
    calculate_depth,
    find_inconsistent_paths,
    is_descendant_path,
    plan_relocation,
)
from flowx.domain.validation import (
    check_parent_accepts_children,
    check_unique_sibling_name,
    validate_color,
    validate_description,
    validate_folder_depth,
    validate_folder_name as validate_server_folder_name,
    validate_folder_name_for_client,
)

if TYPE_CHECKING:
    from flowx.application.project_manager import ProjectManager

logger = logging.getLogger(__name__)


@dataclass
class FolderTreeNode:
    folder: Folder
    children: List[FolderTreeNode] = field(default_factory=list)
    is_expanded: bool = False


class FolderManager(OptimisticCollection[Folder]):
    label = "folder"

    def __init__(self, store, settings=None) -> None:
        super().__init__(store, settings)
        self._projects: Optional[ProjectManager] = None
        self.expanded: Set[str] = set()

    def bind_projects(self, projects: ProjectManager) -> None:
        self._projects = projects

    @property
    def _project_entities(self) -> List[Project]:
        return self._projects.all_entities if self._projects is not None else []

    # Validation

    def validate_folder_name(
        self, name: str, parent_id: Optional[str] = None, exclude_id: Optional[str] = None
    ) -> str:
        """Client rules, then server rules, then sibling uniqueness; returns the trimmed name."""
        trimmed = validate_folder_name_for_client(name)
        validate_server_folder_name(trimmed)
        siblings = [folder for folder in self.all_entities if folder.parent_id == parent_id]
        check_unique_sibling_name(siblings, trimmed, exclude_id=exclude_id)
        return trimmed

    def _require_parent(self, parent_id: str) -> Folder:
        if is_temporary_id(parent_id):
            raise ValidationError("Parent folder is still being created")
        parent = self.get(parent_id, include_deleted=True)
        check_parent_accepts_children(parent)
        return parent

    def prepare_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        parent_id = data.get("parent_id") or None
        name = self.validate_folder_name(data.get("name", ""), parent_id)
        parent_path = self._require_parent(parent_id).path if parent_id else None
        validate_folder_depth(calculate_depth(build_path(parent_path, name)))

        payload: Dict[str, Any] = {
            "name": name,
            "parent_id": parent_id,
            "color": validate_color(data.get("color")) or DEFAULT_FOLDER_COLOR,
        }
        if data.get("description"):
            payload["description"] = validate_description(data["description"])
        if "allow_subfolders" in data:
            payload["allow_subfolders"] = bool(data["allow_subfolders"])
        return payload

    def build_optimistic(self, temp_id: str, data: Dict[str, Any]) -> Folder:
        parent = self.get(data["parent_id"]) if data["parent_id"] else None
        path = build_path(parent.path if parent else None, data["name"])
        return Folder(
            id=temp_id,
            name=data["name"],
            created_at=datetime.now(timezone.utc),
            color=data["color"],
            description=data.get("description"),
            parent_id=data["parent_id"],
            path=path,
            depth=calculate_depth(path),
            allow_subfolders=data.get("allow_subfolders", True),
            project_count=0,
            subfolder_count=0,
        )

    def prepare_update(self, current: Folder, patch: Dict[str, Any]) -> Dict[str, Any]:
        patch = dict(patch)
        if "parent_id" in patch:
            patch["parent_id"] = patch["parent_id"] or None
        moving = "parent_id" in patch and patch["parent_id"] != current.parent_id
        parent_id = patch["parent_id"] if moving else current.parent_id

        if "name" in patch or moving:
            name = self.validate_folder_name(patch.get("name", current.name), parent_id, exclude_id=current.id)
            if "name" in patch:
                patch["name"] = name
        if moving and parent_id is not None:
            self._require_parent(parent_id)
        if "color" in patch:
            patch["color"] = validate_color(patch["color"]) or DEFAULT_FOLDER_COLOR
        if "description" in patch:
            patch["description"] = validate_description(patch["description"])

        return patch

    def plan_update(self, current: Folder, patch: Dict[str, Any]) -> Optional[PathChangePlan]:
        """Plan every path rewrite of a rename or move from one read of both collections."""
        moving = "parent_id" in patch and patch["parent_id"] != current.parent_id
        renaming = "name" in patch and patch["name"] != current.name
        if not (moving or renaming):
            return None
        plan = plan_relocation(
            self.all_entities,
            self._project_entities,
            current.id,
            new_name=patch.get("name"),
            new_parent_id=patch.get("parent_id"),
            move=moving,
        )
        validate_folder_depth(plan.max_depth)
        return plan

    def stage_update(
        self, current: Folder, patch: Dict[str, Any], plan: Optional[PathChangePlan] = None
    ) -> Dict[str, Folder]:
        staged = {current.id: self.apply_patch(current, patch)}
        if plan is None or plan.is_noop:
            return staged
        for rewrite in plan.folders:
            folder = staged.get(rewrite.id) or self.get(rewrite.id, include_deleted=True)
            staged[rewrite.id] = folder.model_copy(update={"path": rewrite.new_path, "depth": rewrite.new_depth})
        logger.debug(f"Staged {len(plan.folders)} path rewrites {plan.old_path} -> {plan.new_path}")
        return staged

    def linked_updates(
        self, current: Folder, patch: Dict[str, Any], plan: Optional[PathChangePlan] = None
    ) -> List[Tuple[OptimisticCollection, Dict[str, Any]]]:
        if plan is None or not plan.projects or self._projects is None:
            return []
        staged = {}
        for rewrite in plan.projects:
            project = self._projects.get(rewrite.id, include_deleted=True)
            if project is not None:
                staged[rewrite.id] = project.model_copy(update={"folder_path": rewrite.new_path})
        return [(self._projects, staged)]

    def check_delete(self, current: Folder) -> None:
        if any(folder.parent_id == current.id for folder in self.entities):
            raise InvariantViolation("Cannot delete folder with subfolders. Delete subfolders first.")
        if any(p.folder_id == current.id and not p.is_deleted for p in self._project_entities):
            raise InvariantViolation("Cannot delete folder with projects. Move or delete projects first.")

    def check_restore(self, current: Folder) -> None:
        if not current.is_deleted:
            raise ValidationError("Folder is not deleted")
        if current.parent_id:
            parent = self.get(current.parent_id, include_deleted=True)
            if parent is None or parent.is_deleted:
                raise InvariantViolation("Cannot restore folder: parent folder no longer exists")

    async def move(self, folder_id: str, new_parent_id: Optional[str]) -> bool:
        return await self.update(folder_id, {"parent_id": new_parent_id})

    # Derived views

    @property
    def folders(self) -> List[Folder]:
        """Non-deleted folders annotated with counts computed by scanning."""
        live = self.entities
        projects = [p for p in self._project_entities if not p.is_deleted]
        annotated = []
        for folder in live:
            direct = [p for p in projects if p.folder_id == folder.id]
            annotated.append(
                folder.model_copy(
                    update={
                        "project_count": len(direct),
                        "subfolder_count": sum(1 for f in live if f.parent_id == folder.id),
                        "last_activity": max((p.metadata.last_modified for p in direct), default=None),
                    }
                )
            )
        return annotated

    @property
    def deleted_folders(self) -> List[Folder]:
        return [folder for folder in self.all_entities if folder.is_deleted]

    def get_folder_by_path(self, path: str) -> Optional[Folder]:
        return next((folder for folder in self.entities if folder.path == path), None)

    def build_folder_path(self, parent_id: Optional[str]) -> str:
        parent = self.get(parent_id) if parent_id else None
        return parent.path if parent else ""

    def children_of(self, parent_id: Optional[str]) -> List[Folder]:
        return [folder for folder in self.entities if folder.parent_id == parent_id]

    def descendants_of(self, folder_id: str) -> List[Folder]:
        folder = self.get(folder_id)
        if folder is None:
            return []
        return [f for f in self.entities if is_descendant_path(f.path, folder.path)]

    def ancestors_of(self, folder_id: str) -> List[Folder]:
        return ancestors_of({f.id: f for f in self.all_entities}, folder_id)

    def inconsistent_paths(self) -> List[str]:
        return find_inconsistent_paths(self.all_entities)

    def folder_tree(self) -> List[FolderTreeNode]:
        nodes = {
            folder.id: FolderTreeNode(folder=folder, is_expanded=folder.id in self.expanded)
            for folder in self.folders
        }
        roots: List[FolderTreeNode] = []
        for node in nodes.values():
            parent = nodes.get(node.folder.parent_id) if node.folder.parent_id else None
            if parent is not None:
                parent.children.append(node)
            else:
                roots.append(node)

        def sort(level: List[FolderTreeNode]) -> None:
            level.sort(key=lambda node: node.folder.name.lower())
            for node in level:
                sort(node.children)

        sort(roots)
        return roots

    def toggle_expanded(self, folder_id: str) -> None:
        if folder_id in self.expanded:
            self.expanded.discard(folder_id)
        else:
            self.expanded.add(folder_id)
        self._notify()

    def folder_stats(self, folder_id: str) -> Optional[Dict[str, Any]]:
        folder = next((f for f in self.folders if f.id == folder_id), None)
        if folder is None:
            return None
        subtree = {folder_id} | {f.id for f in self.descendants_of(folder_id)}
        projects = [p for p in self._project_entities if not p.is_deleted and p.folder_id in subtree]
        return {
            "project_count": folder.project_count,
            "subfolder_count": folder.subfolder_count,
            "total_projects": len(projects),
            "last_activity": max((p.metadata.last_modified for p in projects), default=None),
        }

    def overview(self) -> Dict[str, Any]:
        folders = self.folders
        by_depth: Dict[int, int] = {}
        for folder in folders:
            by_depth[folder.depth] = by_depth.get(folder.depth, 0) + 1
        return {
            "total_folders": len(folders),
            "total_projects": sum(folder.project_count or 0 for folder in folders),
            "recent_activity": max((f.last_activity for f in folders if f.last_activity), default=None),
            "folders_by_depth": by_depth,
        }

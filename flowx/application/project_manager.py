"""Optimistic project collection with filtering, sorting, stats and bulk actions."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from flowx.application.optimistic import OperationKind, OptimisticCollection, is_temporary_id
from flowx.domain.entities import DEFAULT_PROJECT_COLOR, Project, ProjectMetadata
from flowx.domain.errors import DomainError, ValidationError
from flowx.domain.specifications import ProjectFilters, build_project_specification, filter_by_specification
from flowx.domain.strategies import ProjectSort, sort_projects
from flowx.domain.validation import (
    validate_color,
    validate_description,
    validate_due_date,
    validate_priority,
    validate_project_name,
    validate_project_name_for_client,
    validate_status,
    validate_tags,
)

if TYPE_CHECKING:
    from flowx.application.folder_manager import FolderManager

logger = logging.getLogger(__name__)


@dataclass
class BulkOperation:
    type: str
    project_ids: List[str]
    data: Dict[str, Any] = field(default_factory=dict)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ProjectManager(OptimisticCollection[Project]):
    label = "project"

    def __init__(self, store, settings=None) -> None:
        super().__init__(store, settings)
        self._folders: Optional[FolderManager] = None
        self.selected: Set[str] = set()
        self.is_bulk_operating = False

    def bind_folders(self, folders: FolderManager) -> None:
        self._folders = folders

    # Validation

    def validate_project_name(self, name: str) -> str:
        trimmed = validate_project_name_for_client(name)
        return validate_project_name(trimmed)

    def _folder_path(self, folder_id: Optional[str]) -> Optional[str]:
        if not folder_id:
            return None
        if is_temporary_id(folder_id):
            raise ValidationError("Folder is still being created")
        if self._folders is None:
            return None
        folder = self._folders.get(folder_id)
        if folder is None:
            raise ValidationError("Folder not found or deleted")
        return folder.path

    def _validate_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        validators = {
            "description": validate_description,
            "status": validate_status,
            "priority": validate_priority,
            "tags": validate_tags,
            "color": lambda value: validate_color(value) or DEFAULT_PROJECT_COLOR,
            "due_date": validate_due_date,
        }
        cleaned = {}
        for name, validate in validators.items():
            if name in data:
                cleaned[name] = validate(data[name])
        if "name" in data:
            cleaned["name"] = self.validate_project_name(data["name"])
        if "folder_id" in data:
            cleaned["folder_id"] = data["folder_id"] or None
            self._folder_path(cleaned["folder_id"])
        return cleaned

    def prepare_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._validate_fields({"name": data.get("name", ""), **data})
        payload.setdefault("status", "draft")
        payload.setdefault("priority", "medium")
        payload.setdefault("color", DEFAULT_PROJECT_COLOR)
        return payload

    def build_optimistic(self, temp_id: str, data: Dict[str, Any]) -> Project:
        now = _now()
        return Project(
            id=temp_id,
            name=data["name"],
            created_at=now,
            description=data.get("description"),
            folder_id=data.get("folder_id"),
            folder_path=self._folder_path(data.get("folder_id")),
            status=data["status"],
            priority=data["priority"],
            tags=data.get("tags", []),
            color=data["color"],
            due_date=data.get("due_date"),
            metadata=ProjectMetadata(last_modified=now),
        )

    def prepare_update(self, current: Project, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._validate_fields(patch)

    def apply_patch(self, current: Project, patch: Dict[str, Any]) -> Project:
        """Patched copy with the version bumped, as the store will confirm it."""
        data = {**current.model_dump(), **patch}
        if "folder_id" in patch:
            data["folder_path"] = self._folder_path(patch["folder_id"])
        data["metadata"] = {
            **current.metadata.model_dump(),
            "version": current.metadata.version + 1,
            "last_modified": _now(),
        }
        return Project.model_validate(data)

    def check_restore(self, current: Project) -> None:
        if not current.is_deleted:
            raise ValidationError("Project is not deleted")

    # Derived views

    @property
    def deleted_projects(self) -> List[Project]:
        return [project for project in self.all_entities if project.is_deleted]

    def filtered(self, filters: Optional[ProjectFilters] = None, sort: Optional[ProjectSort] = None) -> List[Project]:
        matching = filter_by_specification(self.all_entities, build_project_specification(filters))
        return sort_projects(matching, sort or ProjectSort())

    def projects_in_folder(self, folder_id: Optional[str]) -> List[Project]:
        return [p for p in self.entities if p.folder_id == folder_id]

    def recent_projects(self, days: int = 7, limit: int = 10) -> List[Project]:
        cutoff = _now() - timedelta(days=days)
        recent = [p for p in self.entities if _aware(p.metadata.last_modified) > cutoff]
        recent.sort(key=lambda p: _aware(p.metadata.last_modified), reverse=True)
        return recent[:limit]

    def stats(self) -> Dict[str, Any]:
        live = self.entities
        now = _now()
        by_status: Dict[str, int] = {}
        by_priority: Dict[str, int] = {}
        by_folder: Dict[str, int] = {}
        for project in live:
            by_status[project.status.value] = by_status.get(project.status.value, 0) + 1
            by_priority[project.priority.value] = by_priority.get(project.priority.value, 0) + 1
            folder_key = project.folder_id or "root"
            by_folder[folder_key] = by_folder.get(folder_key, 0) + 1
        return {
            "total": len(live),
            "by_status": by_status,
            "by_priority": by_priority,
            "by_folder": by_folder,
            "recent_activity": max((_aware(p.metadata.last_modified) for p in live), default=None),
            "overdue": sum(
                1
                for p in live
                if p.due_date and _aware(p.due_date) < now and p.status.value != "archived"
            ),
        }

    # Selection

    def toggle_selection(self, project_id: str) -> None:
        if project_id in self.selected:
            self.selected.discard(project_id)
        else:
            self.selected.add(project_id)
        self._notify()

    def select_all(self) -> None:
        self.selected = {project.id for project in self.entities}
        self._notify()

    def clear_selection(self) -> None:
        self.selected = set()
        self._notify()

    # Direct calls

    async def duplicate(self, project_id: str) -> Optional[str]:
        """Copy a project and its active flow; the copy arrives with the next snapshot."""
        self._begin()
        try:
            return await self.store.call("duplicate", {"id": project_id})
        except DomainError as exc:
            self._fail(exc, OperationKind.CREATE)
            return None

    async def bulk_operation(self, operation: BulkOperation) -> bool:
        """Apply one action to many projects; True only if every project succeeded."""
        actions = {
            "delete": lambda pid: self.delete(pid),
            "archive": lambda pid: self.update(pid, {"status": "archived"}),
            "move": lambda pid: self.update(pid, {"folder_id": operation.data.get("folder_id")}),
            "update_status": lambda pid: self.update(pid, {"status": operation.data.get("status")}),
            "update_priority": lambda pid: self.update(pid, {"priority": operation.data.get("priority")}),
        }
        action = actions.get(operation.type)
        if action is None:
            self._begin()
            self._reject(ValidationError(f"Unsupported bulk operation: {operation.type}"), OperationKind.UPDATE)
            return False

        self.is_bulk_operating = True
        self._notify()
        try:
            results = await asyncio.gather(*(action(pid) for pid in operation.project_ids))
        finally:
            self.is_bulk_operating = False
        succeeded = all(results)
        if succeeded:
            self.clear_selection()
        else:
            logger.warning(
                f"Bulk {operation.type}: {results.count(False)} of {len(results)} projects failed"
            )
            self._notify()
        return succeeded

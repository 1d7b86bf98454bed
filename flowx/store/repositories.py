"""Server-side handlers of the reference store.

Records are kept as JSON-mode dicts in a ``TableStore``; each handler
parses what it needs into entities, enforces the authoritative rules and
writes the result back. Handlers never commit: the store commits once
per mutation after the handler returns, so every change made by one
handler (including a whole path cascade) becomes visible together.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from flowx.domain.entities import (
    DEFAULT_FOLDER_COLOR,
    DEFAULT_PROJECT_COLOR,
    CanvasEdge,
    CanvasNode,
    Flow,
    Folder,
    Project,
    ProjectMetadata,
    Viewport,
)
from flowx.domain.errors import InvariantViolation, NotFoundError, ValidationError
from flowx.domain.events import (
    DomainEventPublisher,
    FlowCreated,
    FlowSaved,
    FolderCreated,
    FolderDeleted,
    FolderPathsRewritten,
    FolderPurged,
    FolderRestored,
    FolderUpdated,
    ProjectCreated,
    ProjectDeleted,
    ProjectDuplicated,
    ProjectPurged,
    ProjectRestored,
    ProjectUpdated,
)
from flowx.domain.paths import build_path, calculate_depth, is_descendant_path, plan_relocation
from flowx.domain.validation import (
    PROJECT_NAME_MAX_LENGTH,
    check_parent_accepts_children,
    check_unique_sibling_name,
    validate_color,
    validate_description,
    validate_due_date,
    validate_folder_depth,
    validate_folder_name,
    validate_priority,
    validate_project_name,
    validate_status,
    validate_tags,
)
from flowx.store.tables import TableStore

logger = logging.getLogger(__name__)

_FOLDER_AGGREGATES = {"project_count", "subfolder_count", "last_activity"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _dump(entity: Any, exclude: Optional[set] = None) -> Dict[str, Any]:
    return entity.model_dump(mode="json", exclude=exclude)


class FolderRepository:
    def __init__(self, tables: TableStore, publisher: DomainEventPublisher) -> None:
        self._tables = tables
        self._publisher = publisher

    @property
    def _records(self) -> Dict[str, Dict[str, Any]]:
        return self._tables.table("folders")

    def all(self) -> List[Folder]:
        return [Folder.model_validate(record) for record in self._records.values()]

    def records(self) -> List[Dict[str, Any]]:
        return list(self._records.values())

    def get(self, folder_id: str, include_deleted: bool = False) -> Folder:
        record = self._records.get(folder_id)
        if record is None or (record.get("is_deleted") and not include_deleted):
            raise NotFoundError("Folder not found")
        return Folder.model_validate(record)

    def find(self, folder_id: Optional[str]) -> Optional[Folder]:
        record = self._records.get(folder_id) if folder_id else None
        return Folder.model_validate(record) if record is not None else None

    def _projects(self) -> List[Project]:
        return [Project.model_validate(record) for record in self._tables.table("projects").values()]

    def create(self, data: Mapping[str, Any]) -> str:
        name = validate_folder_name(data.get("name", ""))
        parent_id = data.get("parent_id")
        parent_path = None
        if parent_id:
            parent = self.find(parent_id)
            check_parent_accepts_children(parent)
            parent_path = parent.path
        path = build_path(parent_path, name)
        validate_folder_depth(calculate_depth(path))
        check_unique_sibling_name(
            [folder for folder in self.all() if folder.parent_id == parent_id], name
        )

        folder = Folder(
            id=_new_id(),
            name=name,
            created_at=_now(),
            color=validate_color(data.get("color")) or DEFAULT_FOLDER_COLOR,
            description=validate_description(data.get("description")),
            parent_id=parent_id or None,
            path=path,
            depth=calculate_depth(path),
            allow_subfolders=data.get("allow_subfolders", True),
        )
        self._records[folder.id] = _dump(folder, _FOLDER_AGGREGATES)
        self._publisher.publish(
            FolderCreated(aggregate_id=folder.id, name=folder.name, path=folder.path, parent_id=folder.parent_id)
        )
        return folder.id

    def update(self, folder_id: str, patch: Mapping[str, Any]) -> None:
        """Apply a partial update; renames and moves rewrite the whole subtree."""
        folder = self.get(folder_id)
        record = self._records[folder_id]
        changes: Dict[str, Any] = {}
        if "color" in patch:
            changes["color"] = validate_color(patch["color"]) or DEFAULT_FOLDER_COLOR
        if "description" in patch:
            changes["description"] = validate_description(patch["description"])
        if "allow_subfolders" in patch:
            changes["allow_subfolders"] = bool(patch["allow_subfolders"])

        moving = "parent_id" in patch and (patch["parent_id"] or None) != folder.parent_id
        renaming = "name" in patch and patch["name"].strip() != folder.name
        if moving or renaming:
            new_name = validate_folder_name(patch["name"]) if "name" in patch else folder.name
            new_parent_id = (patch.get("parent_id") or None) if moving else folder.parent_id
            if moving and new_parent_id is not None:
                check_parent_accepts_children(self.find(new_parent_id))

            # One read of both tables feeds the whole plan
            folders = self.all()
            plan = plan_relocation(
                folders, self._projects(), folder_id,
                new_name=new_name, new_parent_id=new_parent_id, move=moving,
            )
            validate_folder_depth(plan.max_depth)
            check_unique_sibling_name(
                [f for f in folders if f.parent_id == new_parent_id], new_name, exclude_id=folder_id
            )

            record["name"] = new_name
            record["parent_id"] = new_parent_id
            changes.update(name=new_name, parent_id=new_parent_id)
            if not plan.is_noop:
                for rewrite in plan.folders:
                    target = self._records[rewrite.id]
                    target["path"] = rewrite.new_path
                    target["depth"] = rewrite.new_depth
                projects = self._tables.table("projects")
                for rewrite in plan.projects:
                    projects[rewrite.id]["folder_path"] = rewrite.new_path
                logger.info(
                    f"Folder path {plan.old_path} -> {plan.new_path}: "
                    f"{len(plan.folders)} folders, {len(plan.projects)} projects rewritten"
                )
                self._publisher.publish(
                    FolderPathsRewritten(
                        aggregate_id=folder_id,
                        old_path=plan.old_path,
                        new_path=plan.new_path,
                        folder_ids=[rewrite.id for rewrite in plan.folders],
                        project_ids=[rewrite.id for rewrite in plan.projects],
                    )
                )

        for field in ("color", "description", "allow_subfolders"):
            if field in changes:
                record[field] = changes[field]

        if changes:
            self._publisher.publish(FolderUpdated(aggregate_id=folder_id, changes=changes))

    def delete(self, folder_id: str, deleted_by: Optional[str] = None) -> None:
        folder = self.get(folder_id)
        if any(f.parent_id == folder_id and not f.is_deleted for f in self.all()):
            raise InvariantViolation("Cannot delete folder with subfolders. Delete subfolders first.")
        if any(p.folder_id == folder_id and not p.is_deleted for p in self._projects()):
            raise InvariantViolation("Cannot delete folder with projects. Move or delete projects first.")

        record = self._records[folder_id]
        record["is_deleted"] = True
        record["deleted_at"] = _now().isoformat()
        record["deleted_by"] = deleted_by
        self._publisher.publish(FolderDeleted(aggregate_id=folder_id, name=folder.name, deleted_by=deleted_by))

    def restore(self, folder_id: str) -> None:
        folder = self.get(folder_id, include_deleted=True)
        if not folder.is_deleted:
            raise ValidationError("Folder is not deleted")
        if folder.parent_id:
            parent = self.find(folder.parent_id)
            if parent is None or parent.is_deleted:
                raise InvariantViolation("Cannot restore folder: parent folder no longer exists")
        check_unique_sibling_name(
            [f for f in self.all() if f.parent_id == folder.parent_id], folder.name, exclude_id=folder_id
        )

        record = self._records[folder_id]
        record.update(is_deleted=False, deleted_at=None, deleted_by=None)
        self._publisher.publish(FolderRestored(aggregate_id=folder_id, name=folder.name))

    def purge(self, folder_id: str) -> None:
        """Hard delete. Refused while anything still references the folder."""
        folder = self.get(folder_id, include_deleted=True)
        if any(f.parent_id == folder_id for f in self.all()) or any(
            p.folder_id == folder_id for p in self._projects()
        ):
            raise InvariantViolation("Cannot purge folder that still has subfolders or projects")
        del self._records[folder_id]
        self._publisher.publish(FolderPurged(aggregate_id=folder_id, name=folder.name))

    def stats(self, folder_id: str) -> Optional[Dict[str, Any]]:
        """Counts computed by scanning; None for unknown or deleted folders."""
        folder = self.find(folder_id)
        if folder is None or folder.is_deleted:
            return None
        folders = [f for f in self.all() if not f.is_deleted]
        projects = [p for p in self._projects() if not p.is_deleted]
        subtree = {folder_id} | {f.id for f in folders if is_descendant_path(f.path, folder.path)}
        subtree_projects = [p for p in projects if p.folder_id in subtree]
        last_activity = max((p.metadata.last_modified for p in subtree_projects), default=None)
        return {
            "project_count": sum(1 for p in projects if p.folder_id == folder_id),
            "subfolder_count": sum(1 for f in folders if f.parent_id == folder_id),
            "total_projects": len(subtree_projects),
            "last_activity": last_activity.isoformat() if last_activity else None,
        }


class FlowRepository:
    def __init__(self, tables: TableStore, publisher: DomainEventPublisher) -> None:
        self._tables = tables
        self._publisher = publisher

    @property
    def _flows(self) -> Dict[str, Dict[str, Any]]:
        return self._tables.table("flows")

    def get(self, flow_id: str) -> Flow:
        record = self._flows.get(flow_id)
        if record is None:
            raise NotFoundError("Flow not found")
        return Flow.model_validate(record)

    def active_for_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        for record in self._flows.values():
            if record["project_id"] == project_id and record["is_active"]:
                return record
        return None

    def create(self, project_id: str, name: str = "Main Flow", description: Optional[str] = None) -> str:
        project = self._tables.table("projects").get(project_id)
        if project is None or project.get("is_deleted"):
            raise NotFoundError("Project not found")
        for record in self._flows.values():
            if record["project_id"] == project_id:
                record["is_active"] = False

        flow = Flow(id=_new_id(), project_id=project_id, name=name, description=description, last_modified=_now())
        self._flows[flow.id] = _dump(flow)
        self._tables.table("flow_nodes")[flow.id] = []
        self._tables.table("flow_edges")[flow.id] = []
        self._publisher.publish(FlowCreated(aggregate_id=flow.id, project_id=project_id, name=name))
        return flow.id

    def get_complete(self, project_id: str) -> Optional[Dict[str, Any]]:
        flow = self.active_for_project(project_id)
        if flow is None:
            return None
        return {
            "flow": flow,
            "nodes": list(self._tables.table("flow_nodes").get(flow["id"], [])),
            "edges": list(self._tables.table("flow_edges").get(flow["id"], [])),
        }

    def save_batch(
        self,
        flow_id: str,
        nodes: List[Mapping[str, Any]],
        edges: List[Mapping[str, Any]],
        viewport: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Make the flow's nodes and edges exactly the given sets.

        Existing nodes keep their creation position; new ones are appended.
        Edges must reference nodes present in the same batch.
        """
        flow = self.get(flow_id)
        parsed_nodes = [CanvasNode.model_validate(node) for node in nodes]
        parsed_edges = [CanvasEdge.model_validate(edge) for edge in edges]
        node_ids = [node.id for node in parsed_nodes]
        if len(set(node_ids)) != len(node_ids):
            raise ValidationError("Duplicate node ids in batch")
        known = set(node_ids)
        for edge in parsed_edges:
            if edge.source not in known or edge.target not in known:
                raise ValidationError(f"Edge {edge.id} references a missing node")

        now = _now()
        record = self._flows[flow_id]
        if viewport is not None:
            record["viewport"] = _dump(Viewport.model_validate(viewport))
        record["last_modified"] = now.isoformat()

        self._tables.table("flow_nodes")[flow_id] = self._replace(
            self._tables.table("flow_nodes").get(flow_id, []), [_dump(node) for node in parsed_nodes]
        )
        self._tables.table("flow_edges")[flow_id] = self._replace(
            self._tables.table("flow_edges").get(flow_id, []), [_dump(edge) for edge in parsed_edges]
        )

        project = self._tables.table("projects").get(flow.project_id)
        if project is not None:
            project["metadata"]["node_count"] = len(parsed_nodes)
            project["metadata"]["edge_count"] = len(parsed_edges)
            project["metadata"]["last_modified"] = now.isoformat()
        self._publisher.publish(
            FlowSaved(
                aggregate_id=flow_id,
                project_id=flow.project_id,
                node_count=len(parsed_nodes),
                edge_count=len(parsed_edges),
            )
        )

    @staticmethod
    def _replace(existing: List[Dict[str, Any]], incoming: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        incoming_by_id = {item["id"]: item for item in incoming}
        kept = [incoming_by_id.pop(item["id"]) for item in existing if item["id"] in incoming_by_id]
        return kept + [item for item in incoming if item["id"] in incoming_by_id]

    def update_viewport(self, flow_id: str, viewport: Mapping[str, Any]) -> None:
        self.get(flow_id)
        record = self._flows[flow_id]
        record["viewport"] = _dump(Viewport.model_validate(viewport))
        record["last_modified"] = _now().isoformat()

    def copy_active(self, source_project_id: str, target_project_id: str) -> Optional[str]:
        source = self.get_complete(source_project_id)
        if source is None:
            return None
        flow_id = self.create(target_project_id, source["flow"]["name"], source["flow"].get("description"))
        self._flows[flow_id]["viewport"] = dict(source["flow"]["viewport"])
        self._tables.table("flow_nodes")[flow_id] = [dict(node) for node in source["nodes"]]
        self._tables.table("flow_edges")[flow_id] = [dict(edge) for edge in source["edges"]]
        return flow_id

    def purge_for_project(self, project_id: str) -> int:
        flow_ids = [fid for fid, record in self._flows.items() if record["project_id"] == project_id]
        for flow_id in flow_ids:
            del self._flows[flow_id]
            self._tables.table("flow_nodes").pop(flow_id, None)
            self._tables.table("flow_edges").pop(flow_id, None)
        return len(flow_ids)


class ProjectRepository:
    def __init__(
        self,
        tables: TableStore,
        publisher: DomainEventPublisher,
        folders: FolderRepository,
        flows: FlowRepository,
    ) -> None:
        self._tables = tables
        self._publisher = publisher
        self._folders = folders
        self._flows = flows

    @property
    def _records(self) -> Dict[str, Dict[str, Any]]:
        return self._tables.table("projects")

    def records(self) -> List[Dict[str, Any]]:
        return list(self._records.values())

    def get(self, project_id: str, include_deleted: bool = False) -> Project:
        record = self._records.get(project_id)
        if record is None or (record.get("is_deleted") and not include_deleted):
            raise NotFoundError("Project not found")
        return Project.model_validate(record)

    def _folder_path(self, folder_id: Optional[str]) -> Optional[str]:
        if not folder_id:
            return None
        folder = self._folders.find(folder_id)
        if folder is None or folder.is_deleted:
            raise ValidationError("Folder not found or deleted")
        return folder.path

    def create(self, data: Mapping[str, Any]) -> str:
        now = _now()
        folder_id = data.get("folder_id") or None
        project = Project(
            id=_new_id(),
            name=validate_project_name(data.get("name", "")),
            created_at=now,
            description=validate_description(data.get("description")),
            folder_id=folder_id,
            folder_path=self._folder_path(folder_id),
            status=validate_status(data.get("status") or "draft"),
            priority=validate_priority(data.get("priority") or "medium"),
            tags=validate_tags(data.get("tags")),
            color=validate_color(data.get("color")) or DEFAULT_PROJECT_COLOR,
            due_date=validate_due_date(data.get("due_date")),
            metadata=ProjectMetadata(last_modified=now),
        )
        self._records[project.id] = _dump(project)
        self._publisher.publish(ProjectCreated(aggregate_id=project.id, name=project.name, folder_id=folder_id))
        return project.id

    def update(self, project_id: str, patch: Mapping[str, Any]) -> None:
        self.get(project_id)
        validators = {
            "name": validate_project_name,
            "description": validate_description,
            "status": validate_status,
            "priority": validate_priority,
            "tags": validate_tags,
            "color": lambda value: validate_color(value) or DEFAULT_PROJECT_COLOR,
            "due_date": validate_due_date,
        }
        changes: Dict[str, Any] = {}
        for field, validate in validators.items():
            if field in patch:
                changes[field] = validate(patch[field])
        if "folder_id" in patch:
            changes["folder_id"] = patch["folder_id"] or None
            changes["folder_path"] = self._folder_path(changes["folder_id"])

        record = self._records[project_id]
        merged = Project.model_validate({**record, **changes})
        merged.metadata.version += 1
        merged.metadata.last_modified = _now()
        self._records[project_id] = _dump(merged)
        self._publisher.publish(ProjectUpdated(aggregate_id=project_id, changes=_dump_changes(changes)))

    def delete(self, project_id: str, deleted_by: Optional[str] = None) -> None:
        project = self.get(project_id)
        record = self._records[project_id]
        record["is_deleted"] = True
        record["deleted_at"] = _now().isoformat()
        record["deleted_by"] = deleted_by
        self._publisher.publish(ProjectDeleted(aggregate_id=project_id, name=project.name, deleted_by=deleted_by))

    def restore(self, project_id: str) -> None:
        project = self.get(project_id, include_deleted=True)
        if not project.is_deleted:
            raise ValidationError("Project is not deleted")
        if project.folder_id:
            folder = self._folders.find(project.folder_id)
            if folder is None or folder.is_deleted:
                raise InvariantViolation("Cannot restore project: its folder is deleted")
        self._records[project_id].update(is_deleted=False, deleted_at=None, deleted_by=None)
        self._publisher.publish(ProjectRestored(aggregate_id=project_id, name=project.name))

    def purge(self, project_id: str) -> None:
        """Hard delete together with every flow, node and edge of the project."""
        project = self.get(project_id, include_deleted=True)
        removed = self._flows.purge_for_project(project_id)
        del self._records[project_id]
        logger.info(f"Purged project {project_id} and {removed} flows")
        self._publisher.publish(ProjectPurged(aggregate_id=project_id, name=project.name))

    def duplicate(self, project_id: str) -> str:
        source = self.get(project_id)
        name = f"{source.name} (Copy)"[:PROJECT_NAME_MAX_LENGTH]
        new_id = self.create(
            {
                "name": name,
                "description": source.description,
                "folder_id": source.folder_id,
                "status": "draft",
                "priority": source.priority.value,
                "tags": list(source.tags),
                "color": source.color,
            }
        )
        self._flows.copy_active(project_id, new_id)
        if source.metadata.node_count or source.metadata.edge_count:
            self._records[new_id]["metadata"]["node_count"] = source.metadata.node_count
            self._records[new_id]["metadata"]["edge_count"] = source.metadata.edge_count
        self._publisher.publish(ProjectDuplicated(aggregate_id=new_id, source_id=project_id, name=name))
        return new_id


def _dump_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in changes.items()}

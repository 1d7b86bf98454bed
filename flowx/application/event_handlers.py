"""Event handlers for domain events."""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, List

from flowx.domain.events import (
    DomainEvent,
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

logger = logging.getLogger(__name__)

# event type -> (entity type, action) recorded in the activity log
ACTIVITY_ACTIONS = {
    FolderCreated: ("folder", "created"),
    FolderUpdated: ("folder", "updated"),
    FolderPathsRewritten: ("folder", "paths_rewritten"),
    FolderDeleted: ("folder", "deleted"),
    FolderRestored: ("folder", "restored"),
    FolderPurged: ("folder", "purged"),
    ProjectCreated: ("project", "created"),
    ProjectUpdated: ("project", "updated"),
    ProjectDeleted: ("project", "deleted"),
    ProjectRestored: ("project", "restored"),
    ProjectPurged: ("project", "purged"),
    ProjectDuplicated: ("project", "duplicated"),
    FlowCreated: ("flow", "created"),
    FlowSaved: ("flow", "saved"),
}


class AuditLogHandler:
    """Logs all domain events for audit trail."""

    def handle_folder_created(self, event: FolderCreated) -> None:
        logger.info(f"[AUDIT] Folder created: {event.aggregate_id} - {event.path}")

    def handle_folder_paths_rewritten(self, event: FolderPathsRewritten) -> None:
        logger.info(
            f"[AUDIT] Folder paths rewritten: {event.old_path} -> {event.new_path} "
            f"({len(event.folder_ids)} folders, {len(event.project_ids)} projects)"
        )

    def handle_folder_deleted(self, event: FolderDeleted) -> None:
        logger.info(f"[AUDIT] Folder deleted: {event.aggregate_id} - {event.name}")

    def handle_folder_purged(self, event: FolderPurged) -> None:
        logger.info(f"[AUDIT] Folder purged: {event.aggregate_id} - {event.name}")

    def handle_project_created(self, event: ProjectCreated) -> None:
        logger.info(f"[AUDIT] Project created: {event.aggregate_id} - {event.name}")

    def handle_project_deleted(self, event: ProjectDeleted) -> None:
        logger.info(f"[AUDIT] Project deleted: {event.aggregate_id} - {event.name}")

    def handle_project_purged(self, event: ProjectPurged) -> None:
        logger.info(f"[AUDIT] Project purged: {event.aggregate_id} - {event.name}")

    def handle_flow_created(self, event: FlowCreated) -> None:
        logger.info(f"[AUDIT] Flow created: {event.aggregate_id} in project {event.project_id}")


class ActivityLogHandler:
    """Appends one activity entry per event to the store's activity table."""

    def __init__(self, activity: List[Dict[str, Any]]) -> None:
        self.activity = activity

    def handle(self, event: DomainEvent) -> None:
        entity_type, action = ACTIVITY_ACTIONS[type(event)]
        details = asdict(event)
        for key in ("aggregate_id", "event_id", "timestamp"):
            details.pop(key)
        self.activity.append(
            {
                "entity_type": entity_type,
                "entity_id": event.aggregate_id,
                "action": action,
                "timestamp": event.timestamp.isoformat(),
                "details": details,
            }
        )


def register_event_handlers(publisher: DomainEventPublisher, activity: List[Dict[str, Any]]) -> None:
    """Register all event handlers with the publisher."""
    audit = AuditLogHandler()
    activity_log = ActivityLogHandler(activity)

    # Audit handlers
    publisher.subscribe(FolderCreated, audit.handle_folder_created)
    publisher.subscribe(FolderPathsRewritten, audit.handle_folder_paths_rewritten)
    publisher.subscribe(FolderDeleted, audit.handle_folder_deleted)
    publisher.subscribe(FolderPurged, audit.handle_folder_purged)
    publisher.subscribe(ProjectCreated, audit.handle_project_created)
    publisher.subscribe(ProjectDeleted, audit.handle_project_deleted)
    publisher.subscribe(ProjectPurged, audit.handle_project_purged)
    publisher.subscribe(FlowCreated, audit.handle_flow_created)

    # Activity log (all events)
    for event_type in ACTIVITY_ACTIONS:
        publisher.subscribe(event_type, activity_log.handle)

"""Domain events raised by the reference store for decoupled side effects."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(kw_only=True)
class DomainEvent:
    """Base class for all domain events."""
    aggregate_id: str
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=_now)


# Folder events

@dataclass(kw_only=True)
class FolderCreated(DomainEvent):
    name: str
    path: str
    parent_id: Optional[str] = None


@dataclass(kw_only=True)
class FolderUpdated(DomainEvent):
    changes: Dict[str, Any]


@dataclass(kw_only=True)
class FolderPathsRewritten(DomainEvent):
    """Raised once per rename/move with every folder and project path it touched."""
    old_path: str
    new_path: str
    folder_ids: List[str]
    project_ids: List[str]


@dataclass(kw_only=True)
class FolderDeleted(DomainEvent):
    name: str
    deleted_by: Optional[str] = None


@dataclass(kw_only=True)
class FolderRestored(DomainEvent):
    name: str


@dataclass(kw_only=True)
class FolderPurged(DomainEvent):
    name: str


# Project events

@dataclass(kw_only=True)
class ProjectCreated(DomainEvent):
    name: str
    folder_id: Optional[str] = None


@dataclass(kw_only=True)
class ProjectUpdated(DomainEvent):
    changes: Dict[str, Any]


@dataclass(kw_only=True)
class ProjectDeleted(DomainEvent):
    name: str
    deleted_by: Optional[str] = None


@dataclass(kw_only=True)
class ProjectRestored(DomainEvent):
    name: str


@dataclass(kw_only=True)
class ProjectPurged(DomainEvent):
    name: str


@dataclass(kw_only=True)
class ProjectDuplicated(DomainEvent):
    source_id: str
    name: str


# Flow events

@dataclass(kw_only=True)
class FlowCreated(DomainEvent):
    project_id: str
    name: str


@dataclass(kw_only=True)
class FlowSaved(DomainEvent):
    project_id: str
    node_count: int
    edge_count: int


class DomainEventPublisher:
    """Dispatches events to handlers subscribed by event type.

    Handler failures are logged and never reach the publishing mutation.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[type, List[Callable[[DomainEvent], None]]] = {}

    def subscribe(self, event_type: type[DomainEvent], handler: Callable[[DomainEvent], None]) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    def publish(self, event: DomainEvent) -> None:
        for handler in self._subscribers.get(type(event), []):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {type(event).__name__}")

    def clear_subscribers(self) -> None:
        """Clear all subscribers (useful for testing)."""
        self._subscribers = {}

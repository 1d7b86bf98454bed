"""Strategy pattern for ordering projects."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence

from flowx.domain.entities import Project
from flowx.domain.errors import ValidationError

PRIORITY_ORDER = {"low": 1, "medium": 2, "high": 3}

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ProjectSortStrategy(Protocol):
    """Produces a sort key for one project."""

    def key(self, project: Project) -> Any:
        ...


class ByName:
    def key(self, project: Project) -> Any:
        return project.name.lower()


class ByCreatedAt:
    def key(self, project: Project) -> Any:
        return _aware(project.created_at)


class ByLastModified:
    def key(self, project: Project) -> Any:
        return _aware(project.metadata.last_modified)


class ByDueDate:
    """Projects without a due date sort after every dated one."""

    def key(self, project: Project) -> Any:
        return _aware(project.due_date) if project.due_date else _FAR_FUTURE


class ByPriority:
    def key(self, project: Project) -> Any:
        return PRIORITY_ORDER[project.priority.value]


class SortStrategyFactory:
    """Factory for choosing a sort strategy by field name."""

    _strategies: Dict[str, ProjectSortStrategy] = {
        "name": ByName(),
        "created_at": ByCreatedAt(),
        "last_modified": ByLastModified(),
        "due_date": ByDueDate(),
        "priority": ByPriority(),
    }

    @classmethod
    def get_strategy(cls, field: str) -> ProjectSortStrategy:
        strategy = cls._strategies.get(field)
        if strategy is None:
            raise ValidationError(f"Unsupported sort field: {field}")
        return strategy

    @classmethod
    def supported_fields(cls) -> List[str]:
        return list(cls._strategies.keys())


@dataclass
class ProjectSort:
    field: str = "last_modified"
    direction: str = "desc"


def sort_projects(projects: Sequence[Project], sort: ProjectSort) -> List[Project]:
    if sort.direction not in ("asc", "desc"):
        raise ValidationError(f"Unsupported sort direction: {sort.direction}")
    strategy = SortStrategyFactory.get_strategy(sort.field)
    return sorted(projects, key=strategy.key, reverse=sort.direction == "desc")

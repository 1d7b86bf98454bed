"""Specification pattern for project filtering."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from flowx.domain.entities import Project


class Specification(ABC):
    """Abstract base for specifications (query filters)."""

    @abstractmethod
    def is_satisfied_by(self, candidate: Project) -> bool:
        """Check if candidate satisfies this specification."""

    def and_(self, other: Specification) -> Specification:
        return AndSpecification(self, other)

    def or_(self, other: Specification) -> Specification:
        return OrSpecification(self, other)

    def not_(self) -> Specification:
        return NotSpecification(self)


class AndSpecification(Specification):
    def __init__(self, left: Specification, right: Specification):
        self.left = left
        self.right = right

    def is_satisfied_by(self, candidate: Project) -> bool:
        return self.left.is_satisfied_by(candidate) and self.right.is_satisfied_by(candidate)


class OrSpecification(Specification):
    def __init__(self, left: Specification, right: Specification):
        self.left = left
        self.right = right

    def is_satisfied_by(self, candidate: Project) -> bool:
        return self.left.is_satisfied_by(candidate) or self.right.is_satisfied_by(candidate)


class NotSpecification(Specification):
    def __init__(self, spec: Specification):
        self.spec = spec

    def is_satisfied_by(self, candidate: Project) -> bool:
        return not self.spec.is_satisfied_by(candidate)


# Project specifications

class ProjectNotDeleted(Specification):
    def is_satisfied_by(self, project: Project) -> bool:
        return not project.is_deleted


class ProjectInFolder(Specification):
    """Projects living directly in ``folder_id`` (None matches root projects)."""

    def __init__(self, folder_id: Optional[str]):
        self.folder_id = folder_id

    def is_satisfied_by(self, project: Project) -> bool:
        return project.folder_id == self.folder_id


class ProjectWithStatus(Specification):
    def __init__(self, status: str):
        self.status = getattr(status, "value", status)

    def is_satisfied_by(self, project: Project) -> bool:
        return project.status.value == self.status


class ProjectWithPriority(Specification):
    def __init__(self, priority: str):
        self.priority = getattr(priority, "value", priority)

    def is_satisfied_by(self, project: Project) -> bool:
        return project.priority.value == self.priority


class ProjectHasAnyTag(Specification):
    def __init__(self, tags: Iterable[str]):
        self.tags = {tag.lower() for tag in tags}

    def is_satisfied_by(self, project: Project) -> bool:
        return any(tag in self.tags for tag in project.tags)


class ProjectMatchesSearch(Specification):
    """Case-insensitive substring match on name, description or any tag."""

    def __init__(self, term: str):
        self.term = term.strip().lower()

    def is_satisfied_by(self, project: Project) -> bool:
        if self.term in project.name.lower():
            return True
        if project.description and self.term in project.description.lower():
            return True
        return any(self.term in tag for tag in project.tags)


class ProjectCreatedBetween(Specification):
    def __init__(self, start: Optional[datetime] = None, end: Optional[datetime] = None):
        self.start = start
        self.end = end

    def is_satisfied_by(self, project: Project) -> bool:
        if self.start is not None and project.created_at < self.start:
            return False
        if self.end is not None and project.created_at > self.end:
            return False
        return True


@dataclass
class ProjectFilters:
    """Filter criteria; ``folder_id`` only applies when ``filter_by_folder`` is set."""

    folder_id: Optional[str] = None
    filter_by_folder: bool = False
    status: Optional[str] = None
    priority: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    search: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None


def build_project_specification(filters: Optional[ProjectFilters]) -> Specification:
    spec: Specification = ProjectNotDeleted()
    if filters is None:
        return spec
    if filters.filter_by_folder:
        spec = spec.and_(ProjectInFolder(filters.folder_id))
    if filters.status:
        spec = spec.and_(ProjectWithStatus(filters.status))
    if filters.priority:
        spec = spec.and_(ProjectWithPriority(filters.priority))
    if filters.tags:
        spec = spec.and_(ProjectHasAnyTag(filters.tags))
    if filters.search and filters.search.strip():
        spec = spec.and_(ProjectMatchesSearch(filters.search))
    if filters.created_after or filters.created_before:
        spec = spec.and_(ProjectCreatedBetween(filters.created_after, filters.created_before))
    return spec


def filter_by_specification(items: Iterable[Project], spec: Specification) -> List[Project]:
    """Filter a collection using a specification."""
    return [item for item in items if spec.is_satisfied_by(item)]

"""Domain entities as pydantic models."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_FOLDER_COLOR = "#3B82F6"
DEFAULT_PROJECT_COLOR = "#3B82F6"


class Entity(BaseModel):
    """Fields shared by folders and projects."""

    id: str
    name: str
    created_at: datetime
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


class Folder(Entity):
    color: str = DEFAULT_FOLDER_COLOR
    description: Optional[str] = None
    parent_id: Optional[str] = None
    path: str
    depth: int
    allow_subfolders: bool = True
    # Aggregates computed on read, never stored authoritatively
    project_count: Optional[int] = None
    subfolder_count: Optional[int] = None
    last_activity: Optional[datetime] = None


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class ProjectPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProjectMetadata(BaseModel):
    node_count: int = 0
    edge_count: int = 0
    last_modified: datetime
    version: int = 1


class Project(Entity):
    description: Optional[str] = None
    folder_id: Optional[str] = None
    folder_path: Optional[str] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    priority: ProjectPriority = ProjectPriority.MEDIUM
    tags: List[str] = Field(default_factory=list)
    color: str = DEFAULT_PROJECT_COLOR
    due_date: Optional[datetime] = None
    metadata: ProjectMetadata


# Canvas / diagram entities

class Viewport(BaseModel):
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0


class Position(BaseModel):
    x: float
    y: float


class NodeData(BaseModel):
    """Node payload; type-specific configuration (URL, image...) lives in properties."""

    model_config = ConfigDict(extra="allow")

    label: str = ""
    type: str = "generic"
    color: Optional[str] = None
    description: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class CanvasNode(BaseModel):
    id: str
    type: str = "custom"
    position: Position
    data: NodeData = Field(default_factory=NodeData)
    style: Optional[Dict[str, Any]] = None


class CanvasEdge(BaseModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    type: Optional[str] = None
    animated: bool = False
    style: Optional[Dict[str, Any]] = None
    label: Optional[str] = None


class Flow(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    version: int = 1
    is_active: bool = True
    viewport: Viewport = Field(default_factory=Viewport)
    last_modified: datetime


class CompleteFlow(BaseModel):
    """A flow together with its nodes (creation order) and edges."""

    flow: Flow
    nodes: List[CanvasNode] = Field(default_factory=list)
    edges: List[CanvasEdge] = Field(default_factory=list)


"""
API Request/Response Schemas using Pydantic.

Structure of HTTP requests and responses for the reference store server.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any
from datetime import datetime

from flowx.domain.entities import CanvasEdge, CanvasNode, Viewport

# Folder schemas
class FolderCreate(BaseModel):
    name: str = Field(..., description="Folder name, unique among its siblings")
    parent_id: Optional[str] = Field(None, description="ID of the parent folder; omit for a root folder")
    color: Optional[str] = Field(None, description="Hex colour, e.g. #3B82F6")
    description: Optional[str] = Field(None, description="Optional description")
    allow_subfolders: bool = Field(default=True, description="Whether the folder accepts subfolders")

class FolderUpdate(BaseModel):
    name: Optional[str] = Field(None, description="New folder name")
    parent_id: Optional[str] = Field(None, description="New parent folder; null moves the folder to the root")
    color: Optional[str] = Field(None, description="Hex colour")
    description: Optional[str] = Field(None, description="Description")
    allow_subfolders: Optional[bool] = Field(None, description="Whether the folder accepts subfolders")

class FolderStats(BaseModel):
    project_count: int = Field(..., description="Non-deleted projects directly in the folder")
    subfolder_count: int = Field(..., description="Non-deleted direct subfolders")
    total_projects: int = Field(..., description="Non-deleted projects in the folder and its descendants")
    last_activity: Optional[datetime] = Field(None, description="Latest project modification in the subtree")

# Project schemas
class ProjectCreate(BaseModel):
    name: str = Field(..., description="Project name")
    description: Optional[str] = Field(None, description="Optional description")
    folder_id: Optional[str] = Field(None, description="ID of the containing folder")
    status: Optional[str] = Field(None, description="draft, active or archived")
    priority: Optional[str] = Field(None, description="low, medium or high")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    color: Optional[str] = Field(None, description="Hex colour")
    due_date: Optional[datetime] = Field(None, description="Optional due date")

class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, description="Project name")
    description: Optional[str] = Field(None, description="Description")
    folder_id: Optional[str] = Field(None, description="Containing folder; null moves the project to the root")
    status: Optional[str] = Field(None, description="draft, active or archived")
    priority: Optional[str] = Field(None, description="low, medium or high")
    tags: Optional[List[str]] = Field(None, description="Replacement tag list")
    color: Optional[str] = Field(None, description="Hex colour")
    due_date: Optional[datetime] = Field(None, description="Due date")

# Flow schemas
class FlowCreate(BaseModel):
    name: str = Field(default="Main Flow", description="Flow name")
    description: Optional[str] = Field(None, description="Optional description")

class FlowBatchSave(BaseModel):
    nodes: List[CanvasNode] = Field(default_factory=list, description="Complete node set of the flow")
    edges: List[CanvasEdge] = Field(default_factory=list, description="Complete edge set of the flow")
    viewport: Optional[Viewport] = Field(None, description="Viewport to store with the flow")

# Shared responses
class CreatedResponse(BaseModel):
    id: str = Field(..., description="Identifier of the created entity")

class SuccessResponse(BaseModel):
    success: bool = Field(default=True, description="Whether the operation was successful")

class ActivityEntry(BaseModel):
    entity_type: str = Field(..., description="folder, project or flow")
    entity_id: str = Field(..., description="ID of the affected entity")
    action: str = Field(..., description="What happened, e.g. created or deleted")
    timestamp: datetime = Field(..., description="When the event was recorded")
    details: Dict[str, Any] = Field(default_factory=dict, description="Event-specific fields")

from fastapi import APIRouter, Path, Query, Depends
from typing import List, Optional

from flowx.dependencies import get_store
from flowx.domain.entities import Project
from flowx.schemas.api_schemas import CreatedResponse, ProjectCreate, ProjectUpdate, SuccessResponse
from flowx.store.memory import InMemoryRemoteStore

router = APIRouter()

@router.get("/projects", response_model=List[Project])
def list_projects(
    folder_id: Optional[str] = Query(None, description="Only projects directly in this folder"),
    include_deleted: bool = Query(False, description="Include soft-deleted projects"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Retrieve all projects.
    """
    projects = [Project.model_validate(record) for record in store.query("projects:list")]
    return [
        project
        for project in projects
        if (include_deleted or not project.is_deleted)
        and (folder_id is None or project.folder_id == folder_id)
    ]

@router.post("/projects", response_model=CreatedResponse, status_code=201)
def create_project(
    project_data: ProjectCreate,
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Create a project, optionally inside a folder.
    """
    project_id = store.execute("projects:create", project_data.model_dump(mode="json", exclude_none=True))
    return CreatedResponse(id=project_id)

@router.get("/projects/{project_id}", response_model=Project)
def get_project(
    project_id: str = Path(..., title="The ID of the project to retrieve"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    return store.projects.get(project_id, include_deleted=True)

@router.patch("/projects/{project_id}", response_model=Project)
def update_project(
    project_data: ProjectUpdate,
    project_id: str = Path(..., title="The ID of the project to update"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    patch = project_data.model_dump(mode="json", exclude_unset=True)
    store.execute("projects:update", {"id": project_id, "patch": patch})
    return store.projects.get(project_id)

@router.delete("/projects/{project_id}", response_model=SuccessResponse)
def delete_project(
    project_id: str = Path(..., title="The ID of the project to delete"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Soft-delete a project; its flow is kept until the project is purged.
    """
    store.execute("projects:delete", {"id": project_id})
    return SuccessResponse(success=True)

@router.post("/projects/{project_id}/restore", response_model=Project)
def restore_project(
    project_id: str = Path(..., title="The ID of the project to restore"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    store.execute("projects:restore", {"id": project_id})
    return store.projects.get(project_id)

@router.post("/projects/{project_id}/duplicate", response_model=CreatedResponse, status_code=201)
def duplicate_project(
    project_id: str = Path(..., title="The ID of the project to copy"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Copy a project together with its active flow.
    """
    return CreatedResponse(id=store.execute("projects:duplicate", {"id": project_id}))

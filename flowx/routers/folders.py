from fastapi import APIRouter, Path, Query, Depends
from typing import List

from flowx.dependencies import get_store
from flowx.domain.entities import Folder
from flowx.domain.errors import NotFoundError
from flowx.schemas.api_schemas import CreatedResponse, FolderCreate, FolderStats, FolderUpdate, SuccessResponse
from flowx.store.memory import InMemoryRemoteStore

router = APIRouter()

@router.get("/folders", response_model=List[Folder])
def list_folders(
    include_deleted: bool = Query(False, description="Include soft-deleted folders"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Retrieve all folders, ordered by creation.
    """
    return [folder for folder in store.folders.all() if include_deleted or not folder.is_deleted]

@router.post("/folders", response_model=CreatedResponse, status_code=201)
def create_folder(
    folder_data: FolderCreate,
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Create a folder under an optional parent.
    """
    folder_id = store.execute("folders:create", folder_data.model_dump(exclude_none=True))
    return CreatedResponse(id=folder_id)

@router.get("/folders/{folder_id}", response_model=Folder)
def get_folder(
    folder_id: str = Path(..., title="The ID of the folder to retrieve"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    return store.folders.get(folder_id, include_deleted=True)

@router.patch("/folders/{folder_id}", response_model=Folder)
def update_folder(
    folder_data: FolderUpdate,
    folder_id: str = Path(..., title="The ID of the folder to update"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Rename, recolour or move a folder. Renames and moves rewrite the paths
    of every descendant folder and contained project.
    """
    patch = folder_data.model_dump(exclude_unset=True)
    store.execute("folders:update", {"id": folder_id, "patch": patch})
    return store.folders.get(folder_id)

@router.delete("/folders/{folder_id}", response_model=SuccessResponse)
def delete_folder(
    folder_id: str = Path(..., title="The ID of the folder to delete"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Soft-delete an empty folder.
    """
    store.execute("folders:delete", {"id": folder_id})
    return SuccessResponse(success=True)

@router.post("/folders/{folder_id}/restore", response_model=Folder)
def restore_folder(
    folder_id: str = Path(..., title="The ID of the folder to restore"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    store.execute("folders:restore", {"id": folder_id})
    return store.folders.get(folder_id)

@router.get("/folders/{folder_id}/stats", response_model=FolderStats)
def folder_stats(
    folder_id: str = Path(..., title="The ID of the folder"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Project and subfolder counts for a folder and its subtree.
    """
    stats = store.query("folders:stats", {"id": folder_id})
    if stats is None:
        raise NotFoundError(f"Folder not found: {folder_id}")
    return stats

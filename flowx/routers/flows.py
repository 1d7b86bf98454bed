from fastapi import APIRouter, Path, Depends

from flowx.dependencies import get_store
from flowx.domain.entities import CompleteFlow
from flowx.domain.errors import NotFoundError
from flowx.schemas.api_schemas import CreatedResponse, FlowBatchSave, FlowCreate, SuccessResponse
from flowx.store.memory import InMemoryRemoteStore

router = APIRouter()

@router.get("/projects/{project_id}/flow", response_model=CompleteFlow)
def get_project_flow(
    project_id: str = Path(..., title="The ID of the project"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    The project's active flow with its nodes and edges.
    """
    complete = store.query("flows:getComplete", {"project_id": project_id})
    if complete is None:
        raise NotFoundError(f"No active flow for project: {project_id}")
    return complete

@router.post("/projects/{project_id}/flow", response_model=CreatedResponse, status_code=201)
def create_project_flow(
    flow_data: FlowCreate,
    project_id: str = Path(..., title="The ID of the project"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Create a new active flow; earlier flows of the project are deactivated.
    """
    flow_id = store.execute(
        "flows:create",
        {"project_id": project_id, "name": flow_data.name, "description": flow_data.description},
    )
    return CreatedResponse(id=flow_id)

@router.put("/flows/{flow_id}/batch", response_model=SuccessResponse)
def save_flow_batch(
    batch: FlowBatchSave,
    flow_id: str = Path(..., title="The ID of the flow to replace"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Replace the flow's nodes and edges with exactly the given sets.
    """
    store.execute(
        "flows:saveBatch",
        {
            "flow_id": flow_id,
            "nodes": [node.model_dump(mode="json") for node in batch.nodes],
            "edges": [edge.model_dump(mode="json") for edge in batch.edges],
            "viewport": batch.viewport.model_dump(mode="json") if batch.viewport else None,
        },
    )
    return SuccessResponse(success=True)

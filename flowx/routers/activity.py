from fastapi import APIRouter, Query, Depends
from typing import List, Optional

from flowx.dependencies import get_store
from flowx.schemas.api_schemas import ActivityEntry
from flowx.store.memory import InMemoryRemoteStore

router = APIRouter()

@router.get("/activity", response_model=List[ActivityEntry])
def list_activity(
    limit: int = Query(50, ge=0, le=500, description="Maximum number of entries"),
    entity_id: Optional[str] = Query(None, description="Only entries for this entity"),
    store: InMemoryRemoteStore = Depends(get_store)
):
    """
    Most recent activity first.
    """
    return store.query("activity:list", {"limit": limit, "entity_id": entity_id})

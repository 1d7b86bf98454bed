"""
Health check endpoints for the reference store server.
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any
from datetime import datetime

from flowx.config import settings
from flowx.dependencies import get_store
from flowx.store.memory import InMemoryRemoteStore

router = APIRouter()

@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.
    Returns API status and version information.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT
    }

@router.get("/health/store")
async def store_health(
    store: InMemoryRemoteStore = Depends(get_store)
) -> Dict[str, Any]:
    """
    Check the reference store.
    Reports table sizes, the commit revision and the snapshot file in use.
    """
    tables = store.tables
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "revision": tables.revision,
        "snapshot_file": str(tables.snapshot_file) if tables.snapshot_file else None,
        "counts": {
            "folders": len(tables.table("folders")),
            "projects": len(tables.table("projects")),
            "flows": len(tables.table("flows")),
            "activity": len(tables.activity),
        },
    }

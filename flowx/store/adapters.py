"""Uniform entity and flow access over a ``RemoteStoreClient``.

``EntityStore`` is used identically for folders and projects: one live
list query plus create/update/soft-delete/restore/purge mutations named
``"<kind>:<operation>"``. Raw records are parsed into pydantic models at
this boundary so everything above it works with typed entities.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from flowx.domain.entities import CanvasEdge, CanvasNode, CompleteFlow, Viewport
from flowx.store.interface import RemoteStoreClient
from flowx.store.subscription import QueryResult, Snapshot, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class EntityStore(Generic[T]):
    def __init__(self, client: RemoteStoreClient, kind: str, model: Type[T]) -> None:
        self.client = client
        self.kind = kind
        self.model = model

    def subscribe(self, callback: Callable[[QueryResult], None]) -> Subscription:
        """Live list of every entity of this kind, soft-deleted ones included."""

        def on_result(result: QueryResult) -> None:
            if isinstance(result, Snapshot):
                callback(Snapshot(self._parse(result.value)))
            else:
                callback(result)

        return self.client.subscribe(f"{self.kind}:list", {}, on_result)

    def _parse(self, records: List[Dict[str, Any]]) -> List[T]:
        return [self.model.model_validate(record) for record in records]

    async def create(self, data: Mapping[str, Any]) -> str:
        return await self.call("create", dict(data))

    async def update(self, entity_id: str, patch: Mapping[str, Any]) -> None:
        await self.call("update", {"id": entity_id, "patch": dict(patch)})

    async def soft_delete(self, entity_id: str, deleted_by: Optional[str] = None) -> None:
        await self.call("delete", {"id": entity_id, "deleted_by": deleted_by})

    async def restore(self, entity_id: str) -> None:
        await self.call("restore", {"id": entity_id})

    async def purge(self, entity_id: str) -> None:
        await self.call("purge", {"id": entity_id})

    async def call(self, name: str, args: Dict[str, Any]) -> Any:
        logger.debug(f"{self.kind}:{name} {args}")
        return await self.client.mutation(f"{self.kind}:{name}", args)


class FlowStore:
    """Per-project diagram access: one live complete-flow query and batch writes."""

    def __init__(self, client: RemoteStoreClient) -> None:
        self.client = client

    def subscribe_complete_flow(
        self, project_id: str, callback: Callable[[QueryResult], None]
    ) -> Subscription:
        """Deliver ``Snapshot(CompleteFlow)`` or ``Snapshot(None)`` when no active flow exists."""

        def on_result(result: QueryResult) -> None:
            if isinstance(result, Snapshot):
                value = result.value
                callback(Snapshot(CompleteFlow.model_validate(value) if value else None))
            else:
                callback(result)

        return self.client.subscribe("flows:getComplete", {"project_id": project_id}, on_result)

    async def create_flow(self, project_id: str, name: str = "Main Flow") -> str:
        return await self.client.mutation("flows:create", {"project_id": project_id, "name": name})

    async def batch_save(
        self,
        flow_id: str,
        nodes: List[CanvasNode],
        edges: List[CanvasEdge],
        viewport: Optional[Viewport] = None,
    ) -> None:
        """Replace the flow's nodes and edges with exactly the given sets."""
        await self.client.mutation(
            "flows:saveBatch",
            {
                "flow_id": flow_id,
                "nodes": [node.model_dump(mode="json") for node in nodes],
                "edges": [edge.model_dump(mode="json") for edge in edges],
                "viewport": viewport.model_dump(mode="json") if viewport else None,
            },
        )

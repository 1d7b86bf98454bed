"""In-memory reference implementation of the remote reactive store.

Every committed mutation re-evaluates the active subscriptions on the
next loop iteration; a subscription only receives a new ``Snapshot``
when its query result changed. Server-side rule violations come back to
callers as ``RemoteCallError`` carrying the original error code.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from flowx.config import Settings, settings as default_settings
from flowx.domain.errors import DomainError, RemoteCallError
from flowx.domain.events import DomainEventPublisher
from flowx.store.interface import RemoteStoreClient
from flowx.store.repositories import FlowRepository, FolderRepository, ProjectRepository
from flowx.store.subscription import LOADING, QueryResult, Snapshot, Subscription
from flowx.store.tables import TableStore

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]


class InMemoryRemoteStore(RemoteStoreClient):
    def __init__(
        self,
        settings: Optional[Settings] = None,
        tables: Optional[TableStore] = None,
        publisher: Optional[DomainEventPublisher] = None,
    ) -> None:
        self.settings = settings or default_settings
        if tables is None:
            snapshot_file = self.settings.STORE_SNAPSHOT_FILE
            tables = TableStore(Path(snapshot_file) if snapshot_file else None)
        self.tables = tables
        self.publisher = publisher or DomainEventPublisher()

        self.folders = FolderRepository(self.tables, self.publisher)
        self.flows = FlowRepository(self.tables, self.publisher)
        self.projects = ProjectRepository(self.tables, self.publisher, self.folders, self.flows)

        self._connected = False
        self._subscriptions: List[Subscription] = []
        self._flush_pending = False
        # (name, args) of every mutation received over the client boundary
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

        self._queries: Dict[str, Handler] = {
            "folders:list": lambda args: self.folders.records(),
            "folders:stats": lambda args: self.folders.stats(args["id"]),
            "projects:list": lambda args: self.projects.records(),
            "flows:getComplete": lambda args: self.flows.get_complete(args["project_id"]),
            "activity:list": self._activity,
        }
        self._mutations: Dict[str, Handler] = {
            "folders:create": lambda args: self.folders.create(args),
            "folders:update": lambda args: self.folders.update(args["id"], args.get("patch", {})),
            "folders:delete": lambda args: self.folders.delete(args["id"], args.get("deleted_by")),
            "folders:restore": lambda args: self.folders.restore(args["id"]),
            "folders:purge": lambda args: self.folders.purge(args["id"]),
            "projects:create": lambda args: self.projects.create(args),
            "projects:update": lambda args: self.projects.update(args["id"], args.get("patch", {})),
            "projects:delete": lambda args: self.projects.delete(args["id"], args.get("deleted_by")),
            "projects:restore": lambda args: self.projects.restore(args["id"]),
            "projects:purge": lambda args: self.projects.purge(args["id"]),
            "projects:duplicate": lambda args: self.projects.duplicate(args["id"]),
            "flows:create": lambda args: self.flows.create(
                args["project_id"], args.get("name", "Main Flow"), args.get("description")
            ),
            "flows:saveBatch": lambda args: self.flows.save_batch(
                args["flow_id"], args.get("nodes", []), args.get("edges", []), args.get("viewport")
            ),
            "flows:updateViewport": lambda args: self.flows.update_viewport(args["flow_id"], args["viewport"]),
        }

    # Connection lifecycle

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"Remote store connected ({len(self._subscriptions)} subscriptions)")
        self._schedule_flush()

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("Remote store disconnected")

    @property
    def connected(self) -> bool:
        return self._connected

    # Reads

    def subscribe(
        self,
        query: str,
        args: Optional[Dict[str, Any]],
        callback: Callable[[QueryResult], None],
    ) -> Subscription:
        if query not in self._queries:
            raise RemoteCallError(f"Unknown query: {query}", code="not_found")
        subscription = Subscription(query, dict(args or {}), callback, on_cancel=self._subscriptions.remove)
        self._subscriptions.append(subscription)
        subscription.deliver(LOADING)
        self._schedule_flush()
        return subscription

    def query(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """One-shot read of a query's current result."""
        handler = self._queries.get(name)
        if handler is None:
            raise RemoteCallError(f"Unknown query: {name}", code="not_found")
        return copy.deepcopy(handler(args or {}))

    def _activity(self, args: Dict[str, Any]) -> List[Dict[str, Any]]:
        limit = int(args.get("limit", 50))
        entries = self.tables.activity
        if args.get("entity_id"):
            entries = [entry for entry in entries if entry["entity_id"] == args["entity_id"]]
        return list(reversed(entries[-limit:])) if limit > 0 else []

    # Writes

    async def mutation(self, name: str, args: Dict[str, Any]) -> Any:
        if not self._connected:
            raise RemoteCallError("Remote store is not connected", code="unavailable")
        self.calls.append((name, args))
        if self.settings.STORE_LATENCY_MS:
            await asyncio.sleep(self.settings.STORE_LATENCY_MS / 1000)
            if not self._connected:
                raise RemoteCallError("Remote store connection lost", code="unavailable")
        return self.execute(name, args)

    def execute(self, name: str, args: Dict[str, Any]) -> Any:
        """Run a mutation handler and commit its changes as one unit."""
        handler = self._mutations.get(name)
        if handler is None:
            raise RemoteCallError(f"Unknown mutation: {name}", code="not_found")
        try:
            result = handler(args)
        except DomainError as exc:
            logger.warning(f"Mutation {name} rejected: {exc}")
            raise RemoteCallError(str(exc), code=exc.code) from exc
        self.tables.commit()
        logger.debug(f"Mutation {name} committed (revision {self.tables.revision})")
        self._schedule_flush()
        return result

    def call_count(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)

    # Push delivery

    def _schedule_flush(self) -> None:
        if not self._connected or self._flush_pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._flush()
            return
        self._flush_pending = True
        loop.call_soon(self._flush)

    def _flush(self) -> None:
        self._flush_pending = False
        if not self._connected:
            return
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            value = copy.deepcopy(self._queries[subscription.query](subscription.args))
            if subscription.last_value is LOADING or value != subscription.last_value:
                subscription.last_value = value
                subscription.deliver(Snapshot(value))

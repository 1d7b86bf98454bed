"""Canvas Synchronization State Machine.

Mirrors the active flow of the selected project into local nodes, edges and
viewport, and writes local edits back with a debounced full-replace batch.

    EMPTY -> LOADING -> CREATING_FLOW -> LOADED <-> SAVING
                     \\________________/      \\-> ERROR

While a batch write is in flight for a project, confirmed snapshots for
that project are not applied to local state, and further writes for it are
parked (the latest parked request wins) until the in-flight one settles.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set, Tuple

from flowx.config import Settings, settings as default_settings
from flowx.domain.canvas import prune_dangling_edges, remove_node
from flowx.domain.entities import CanvasEdge, CanvasNode, CompleteFlow, Position, Viewport
from flowx.domain.errors import DomainError
from flowx.store.adapters import FlowStore
from flowx.store.subscription import QueryResult, Snapshot, Subscription

logger = logging.getLogger(__name__)


class CanvasState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    CREATING_FLOW = "creating_flow"
    LOADED = "loaded"
    SAVING = "saving"
    ERROR = "error"


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


EDITABLE_STATES = (CanvasState.LOADED, CanvasState.SAVING, CanvasState.ERROR)


@dataclass(frozen=True)
class SaveRequest:
    """Complete desired state of one flow, captured when the write was scheduled."""

    project_id: str
    flow_id: str
    nodes: Tuple[CanvasNode, ...]
    edges: Tuple[CanvasEdge, ...]
    viewport: Viewport
    session: int = 0


class SaveGuard:
    """Per-project in-flight marker with a single parked follow-up write."""

    def __init__(self) -> None:
        self._blocked: Set[str] = set()
        self._parked: Dict[str, Tuple[SaveRequest, asyncio.Future]] = {}

    def is_blocked(self, project_id: str) -> bool:
        return project_id in self._blocked

    def block(self, project_id: str) -> None:
        self._blocked.add(project_id)

    def park(self, request: SaveRequest) -> asyncio.Future:
        """Park a write, replacing any earlier parked one for the project.

        Every caller parked behind the same in-flight write gets the same
        future, resolved with the outcome of the write finally sent.
        """
        parked = self._parked.get(request.project_id)
        waiter = parked[1] if parked else asyncio.get_running_loop().create_future()
        self._parked[request.project_id] = (request, waiter)
        return waiter

    def release(self, project_id: str) -> Optional[Tuple[SaveRequest, asyncio.Future]]:
        """Unblock the project and hand back the write parked behind it, if any."""
        self._blocked.discard(project_id)
        return self._parked.pop(project_id, None)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CanvasSync:
    def __init__(self, flows: FlowStore, settings: Optional[Settings] = None) -> None:
        self.flows = flows
        self.settings = settings or default_settings

        self.state = CanvasState.EMPTY
        self.save_status = SaveStatus.IDLE
        self.project_id: Optional[str] = None
        self.flow_id: Optional[str] = None
        self.nodes: List[CanvasNode] = []
        self.edges: List[CanvasEdge] = []
        self.viewport = Viewport()
        self.has_unsaved_changes = False
        self.last_save_time: Optional[datetime] = None
        self.error: Optional[str] = None

        self._project_name: Optional[str] = None
        self._session = 0
        self._subscription: Optional[Subscription] = None
        self._guard = SaveGuard()
        self._debounce: Optional[asyncio.Task] = None
        self._timers: Set[asyncio.Task] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[], None]] = []

    # Observation

    @property
    def is_loading(self) -> bool:
        return self.state in (CanvasState.LOADING, CanvasState.CREATING_FLOW)

    @property
    def is_loaded(self) -> bool:
        return self.state in EDITABLE_STATES

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def _set_state(self, state: CanvasState) -> None:
        if state is not self.state:
            logger.debug(f"Canvas {self.project_id}: {self.state.value} -> {state.value}")
            self.state = state

    # Project selection

    def select_project(self, project_id: Optional[str], project_name: Optional[str] = None) -> None:
        """Switch the canvas to another project, or to none.

        Writes already scheduled for the previous project keep running
        against the flow id they captured.
        """
        if project_id == self.project_id:
            return
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self.has_unsaved_changes:
            logger.info(f"Leaving project {self.project_id} with unsaved canvas changes")
        # Detach, not cancel: the pending write belongs to the previous project.
        self._debounce = None

        self.project_id = project_id
        self._session += 1
        self._project_name = project_name
        self.flow_id = None
        self.nodes = []
        self.edges = []
        self.viewport = Viewport()
        self.has_unsaved_changes = False
        self.last_save_time = None
        self.save_status = SaveStatus.IDLE
        self.error = None

        if project_id is None:
            self._set_state(CanvasState.EMPTY)
            self._notify()
            return
        self._set_state(CanvasState.LOADING)
        self._notify()
        self._subscription = self.flows.subscribe_complete_flow(
            project_id, lambda result: self._on_flow(project_id, result)
        )

    def _on_flow(self, project_id: str, result: QueryResult) -> None:
        if project_id != self.project_id or not isinstance(result, Snapshot):
            return
        complete: Optional[CompleteFlow] = result.value

        if complete is None:
            if self.state is CanvasState.LOADING:
                self._set_state(CanvasState.CREATING_FLOW)
                self._notify()
                self._spawn(self._create_flow(project_id))
            return
        if self.flow_id is not None and (self._guard.is_blocked(project_id) or self.has_unsaved_changes):
            logger.debug(f"Skipping flow snapshot for {project_id}: local changes are newer")
            return

        self.flow_id = complete.flow.id
        self.nodes = list(complete.nodes)
        self.edges = list(complete.edges)
        self.viewport = complete.flow.viewport
        self.last_save_time = complete.flow.last_modified
        self.save_status = SaveStatus.SAVED
        self.error = None
        self._set_state(CanvasState.LOADED)
        logger.info(f"Loaded flow {complete.flow.id}: {len(self.nodes)} nodes, {len(self.edges)} edges")
        self._notify()

    async def _create_flow(self, project_id: str) -> None:
        name = f"{self._project_name} Flow" if self._project_name else "Main Flow"
        try:
            flow_id = await self.flows.create_flow(project_id, name)
        except DomainError as exc:
            logger.error(f"Failed to create flow for project {project_id}: {exc}")
            if project_id == self.project_id:
                self.error = str(exc) or "Failed to create flow"
                self.save_status = SaveStatus.ERROR
                self._set_state(CanvasState.ERROR)
                self._notify()
            return

        logger.info(f"Created flow {flow_id} for project {project_id}")
        if project_id != self.project_id or self.state is not CanvasState.CREATING_FLOW:
            return
        self.flow_id = flow_id
        self.nodes = []
        self.edges = []
        self.viewport = Viewport()
        self.has_unsaved_changes = False
        self.last_save_time = _now()
        self.save_status = SaveStatus.SAVED
        self._set_state(CanvasState.LOADED)
        self._notify()

    # Edits

    def set_nodes(self, nodes: List[CanvasNode]) -> bool:
        """Replace every node; a grown node list also schedules the fast save."""
        grew = len(nodes) > len(self.nodes)
        return self._edit(nodes=list(nodes), fast=grew)

    def set_edges(self, edges: List[CanvasEdge]) -> bool:
        return self._edit(edges=list(edges))

    def set_viewport(self, viewport: Viewport) -> bool:
        return self._edit(viewport=viewport)

    def add_node(self, node: CanvasNode) -> bool:
        if any(existing.id == node.id for existing in self.nodes):
            logger.warning(f"Node {node.id} already exists")
            return False
        return self._edit(nodes=[*self.nodes, node], fast=True)

    def move_node(self, node_id: str, x: float, y: float) -> bool:
        return self._replace_node(node_id, position=Position(x=x, y=y))

    def update_node(self, node_id: str, data: Dict[str, Any]) -> bool:
        node = self._node(node_id)
        if node is None:
            return False
        merged = node.data.model_validate({**node.data.model_dump(), **data})
        return self._replace_node(node_id, data=merged)

    def delete_node(self, node_id: str) -> bool:
        """Remove the node and every edge attached to it in one edit."""
        if self._node(node_id) is None:
            return False
        nodes, edges = remove_node(self.nodes, self.edges, node_id)
        return self._edit(nodes=nodes, edges=edges)

    def add_edge(self, edge: CanvasEdge) -> bool:
        if self._node(edge.source) is None or self._node(edge.target) is None:
            logger.warning(f"Edge {edge.id} references a missing node")
            return False
        if any(existing.id == edge.id for existing in self.edges):
            logger.warning(f"Edge {edge.id} already exists")
            return False
        return self._edit(edges=[*self.edges, edge])

    def delete_edge(self, edge_id: str) -> bool:
        edges = [edge for edge in self.edges if edge.id != edge_id]
        if len(edges) == len(self.edges):
            return False
        return self._edit(edges=edges)

    def _node(self, node_id: str) -> Optional[CanvasNode]:
        return next((node for node in self.nodes if node.id == node_id), None)

    def _replace_node(self, node_id: str, **changes: Any) -> bool:
        if self._node(node_id) is None:
            return False
        nodes = [node.model_copy(update=changes) if node.id == node_id else node for node in self.nodes]
        return self._edit(nodes=nodes)

    def _edit(
        self,
        nodes: Optional[List[CanvasNode]] = None,
        edges: Optional[List[CanvasEdge]] = None,
        viewport: Optional[Viewport] = None,
        fast: bool = False,
    ) -> bool:
        if self.state not in EDITABLE_STATES or self.flow_id is None:
            logger.debug(f"Ignoring canvas edit while {self.state.value}")
            return False
        if nodes is not None:
            self.nodes = nodes
        if edges is not None:
            self.edges = edges
        if viewport is not None:
            self.viewport = viewport
        self.has_unsaved_changes = True
        self._schedule_debounced_save()
        if fast:
            self._schedule_fast_save()
        self._notify()
        return True

    # Saving

    def _capture(self) -> SaveRequest:
        edges, dropped = prune_dangling_edges(self.nodes, self.edges)
        if dropped:
            logger.warning(f"Dropping {len(dropped)} edges that reference missing nodes")
            self.edges = edges
        return SaveRequest(
            project_id=self.project_id,
            flow_id=self.flow_id,
            nodes=tuple(self.nodes),
            edges=tuple(edges),
            viewport=self.viewport,
            session=self._session,
        )

    def _owns(self, request: SaveRequest) -> bool:
        """True when the write was captured in the current selection of its project."""
        return request.session == self._session

    def _schedule_debounced_save(self) -> None:
        self._cancel_debounce()
        self._debounce = self._spawn(self._debounced_save(self._capture()), timer=True)

    def _schedule_fast_save(self) -> None:
        self._spawn(self._fast_save(self._capture()), timer=True)

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    async def _debounced_save(self, request: SaveRequest) -> None:
        await asyncio.sleep(self.settings.AUTOSAVE_DELAY_MS / 1000)
        task = asyncio.current_task()
        self._timers.discard(task)
        if self._debounce is task:
            self._debounce = None
        await self._dispatch(request)

    async def _fast_save(self, request: SaveRequest) -> None:
        await asyncio.sleep(self.settings.NEW_NODE_SAVE_DELAY_MS / 1000)
        self._timers.discard(asyncio.current_task())
        if self._owns(request):
            if not self.has_unsaved_changes:
                return
            # The current state supersedes both this capture and the debounce.
            self._cancel_debounce()
            request = self._capture()
        await self._dispatch(request)

    async def manual_save(self) -> bool:
        """Write the current state now, bypassing the debounce timer.

        When a write for the project is already in flight, waits for the
        parked follow-up and returns its outcome.
        """
        if self.flow_id is None or self.state not in EDITABLE_STATES:
            logger.warning(f"Skipping save: no flow loaded for project {self.project_id}")
            return False
        self._cancel_debounce()
        return await self._dispatch(self._capture())

    async def _dispatch(self, request: SaveRequest) -> bool:
        if self._guard.is_blocked(request.project_id):
            logger.debug(f"Write for project {request.project_id} parked behind the one in flight")
            return await asyncio.shield(self._guard.park(request))

        self._guard.block(request.project_id)
        if self._owns(request):
            self.has_unsaved_changes = False
            self.save_status = SaveStatus.SAVING
            self._set_state(CanvasState.SAVING)
            self._notify()
        logger.info(
            f"Saving flow {request.flow_id}: {len(request.nodes)} nodes, {len(request.edges)} edges"
        )
        try:
            await self.flows.batch_save(
                request.flow_id, list(request.nodes), list(request.edges), request.viewport
            )
        except DomainError as exc:
            logger.error(f"Save of flow {request.flow_id} failed: {exc}")
            if self._owns(request):
                self.error = str(exc) or "Failed to save flow"
                self.save_status = SaveStatus.ERROR
                self.has_unsaved_changes = True
                self._set_state(CanvasState.ERROR)
                self._notify()
            return False
        else:
            if self._owns(request):
                self.error = None
                self.save_status = SaveStatus.SAVED
                self.last_save_time = _now()
                self._set_state(CanvasState.LOADED)
                self._notify()
            return True
        finally:
            parked = self._guard.release(request.project_id)
            if parked is not None:
                self._spawn(self._send_parked(*parked))

    async def _send_parked(self, request: SaveRequest, waiter: asyncio.Future) -> None:
        outcome = False
        try:
            outcome = await self._dispatch(request)
        finally:
            if not waiter.done():
                waiter.set_result(outcome)

    # Task bookkeeping

    def _spawn(self, coro: Coroutine[Any, Any, Any], timer: bool = False) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if timer:
            self._timers.add(task)
            task.add_done_callback(self._timers.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until no timer or write is pending."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel the subscription and pending timers; in-flight writes still settle."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()
        self._debounce = None

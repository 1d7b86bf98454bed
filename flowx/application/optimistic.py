"""Optimistic Mutation Engine.

Keeps, per entity kind, a merged view of the confirmed snapshot pushed by
the remote store and a local overlay of pending (not yet confirmed)
entities. Each mutating operation stages its overlay entries before the
remote call is issued and removes them, by the key it staged them under,
once the call settles. A failed call therefore reverts the view to the
last confirmed value.

Errors are reported through a single ``error`` slot. Remote failures
schedule an automatic clear after ``RETRY_DELAY_MS * (retry_count + 1)``
while ``retry_count`` is below ``MAX_RETRY_COUNT``; rejected input sets
the slot without a timer.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)
from uuid import uuid4

from pydantic import BaseModel

from flowx.config import Settings, settings as default_settings
from flowx.domain.errors import DomainError, NotFoundError
from flowx.store.adapters import EntityStore
from flowx.store.subscription import QueryResult, Snapshot, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

TEMP_ID_PREFIX = "temp_"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Confirmed(Generic[T]):
    entity: T

    @property
    def is_optimistic(self) -> bool:
        return False


@dataclass(frozen=True)
class Pending(Generic[T]):
    entity: T
    operation: OperationKind
    optimistic_key: str

    @property
    def is_optimistic(self) -> bool:
        return True


Entry = Union[Confirmed[T], Pending[T]]


def merge_entities(confirmed: Mapping[str, T], overlay: Mapping[str, Pending[T]]) -> Dict[str, Entry]:
    """One entry per id of ``confirmed`` and ``overlay``; overlay entries win.

    Confirmed order is kept, with overlay-only entries appended in overlay order.
    """
    merged: Dict[str, Entry] = {}
    for entity_id, entity in confirmed.items():
        merged[entity_id] = overlay.get(entity_id) or Confirmed(entity)
    for entity_id, pending in overlay.items():
        if entity_id not in merged:
            merged[entity_id] = pending
    return merged


def is_temporary_id(entity_id: str) -> bool:
    return entity_id.startswith(TEMP_ID_PREFIX)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OptimisticCollection(ABC, Generic[T]):
    """Merged confirmed + pending view of one entity kind, with optimistic mutations.

    Subclasses supply ``build_optimistic`` and may override the validation
    and staging hooks (``prepare_create``, ``prepare_update``, ``plan_update``,
    ``stage_update``, ``linked_updates``, ``check_delete``, ``check_restore``).
    ``plan_update`` runs once per update and its result is handed to both
    staging hooks.
    """

    label = "entity"

    def __init__(self, store: EntityStore[T], settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or default_settings
        self.error: Optional[str] = None
        self.failure: Optional[DomainError] = None
        self.retry_count = 0

        self._confirmed: Optional[Dict[str, T]] = None
        self._overlay: Dict[str, Pending[T]] = {}
        self._deferred: Dict[str, List[Tuple[OperationKind, Dict[str, Any]]]] = {}
        self._in_flight: Counter = Counter()
        self._subscription: Optional[Subscription] = None
        self._listeners: List[Callable[[], None]] = []
        self._error_timer: Optional[asyncio.TimerHandle] = None
        self._session = uuid4().hex[:8]
        self._temp_ids = itertools.count(1)
        self._keys = itertools.count(1)

    # Lifecycle

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.store.subscribe(self._on_result)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._cancel_error_timer()

    def _on_result(self, result: QueryResult) -> None:
        if isinstance(result, Snapshot):
            self._confirmed = {entity.id: entity for entity in result.value}
        else:
            self._confirmed = None
        self._notify()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener`` after every change of the view or status; returns an unsubscriber."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # View

    @property
    def is_loading(self) -> bool:
        return self._confirmed is None

    @property
    def entries(self) -> List[Entry]:
        return list(merge_entities(self._confirmed or {}, self._overlay).values())

    @property
    def all_entities(self) -> List[T]:
        return [entry.entity for entry in self.entries]

    @property
    def entities(self) -> List[T]:
        return [entity for entity in self.all_entities if not entity.is_deleted]

    @property
    def confirmed(self) -> Dict[str, T]:
        return dict(self._confirmed or {})

    def entry(self, entity_id: str) -> Optional[Entry]:
        pending = self._overlay.get(entity_id)
        if pending is not None:
            return pending
        entity = (self._confirmed or {}).get(entity_id)
        return Confirmed(entity) if entity is not None else None

    def get(self, entity_id: str, include_deleted: bool = False) -> Optional[T]:
        entry = self.entry(entity_id)
        if entry is None or (entry.entity.is_deleted and not include_deleted):
            return None
        return entry.entity

    @property
    def is_creating(self) -> bool:
        return self._in_flight[OperationKind.CREATE] > 0

    @property
    def is_updating(self) -> bool:
        return self._in_flight[OperationKind.UPDATE] > 0

    @property
    def is_deleting(self) -> bool:
        return self._in_flight[OperationKind.DELETE] > 0

    # Hooks

    def prepare_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and normalize a create payload."""
        return data

    @abstractmethod
    def build_optimistic(self, temp_id: str, data: Dict[str, Any]) -> T:
        """Entity shown in the view while the create is in flight."""

    def prepare_update(self, current: T, patch: Dict[str, Any]) -> Dict[str, Any]:
        return patch

    def apply_patch(self, current: T, patch: Mapping[str, Any]) -> T:
        return type(current).model_validate({**current.model_dump(), **patch})

    def plan_update(self, current: T, patch: Dict[str, Any]) -> Any:
        return None

    def stage_update(self, current: T, patch: Dict[str, Any], plan: Any = None) -> Dict[str, T]:
        """Overlay entries for an update, keyed by id."""
        return {current.id: self.apply_patch(current, patch)}

    def linked_updates(
        self, current: T, patch: Dict[str, Any], plan: Any = None
    ) -> List[Tuple[OptimisticCollection, Dict[str, Any]]]:
        """Entries other collections show while this update is in flight."""
        return []

    def check_delete(self, current: T) -> None:
        pass

    def check_restore(self, current: T) -> None:
        pass

    # Operations

    async def create(self, data: Mapping[str, Any]) -> Optional[str]:
        """Create an entity; returns its confirmed id, or None on failure."""
        self._begin()
        try:
            payload = self.prepare_create(dict(data))
        except DomainError as exc:
            self._reject(exc, OperationKind.CREATE)
            return None

        temp_id = f"{TEMP_ID_PREFIX}{self._session}_{next(self._temp_ids)}"
        key = self._stage(OperationKind.CREATE, {temp_id: self.build_optimistic(temp_id, payload)})
        try:
            real_id = await self.store.create(payload)
        except DomainError as exc:
            dropped = self._deferred.pop(temp_id, [])
            if dropped:
                logger.warning(f"Dropping {len(dropped)} queued operations on failed {self.label} {temp_id}")
            self._settle(key, OperationKind.CREATE)
            self._fail(exc, OperationKind.CREATE)
            return None

        latest = self._overlay.get(temp_id)
        self._settle(key, OperationKind.CREATE)
        logger.info(f"Created {self.label} {real_id}")
        deferred = self._deferred.pop(temp_id, [])
        if deferred and latest is not None:
            await self._replay(real_id, latest.entity.model_copy(update={"id": real_id}), deferred)
        return real_id

    async def update(self, entity_id: str, patch: Mapping[str, Any]) -> bool:
        self._begin()
        current = self.get(entity_id, include_deleted=True)
        if current is None:
            self._reject(NotFoundError(f"{self.label.capitalize()} not found"), OperationKind.UPDATE)
            return False
        try:
            patch = self.prepare_update(current, dict(patch))
            plan = self.plan_update(current, patch)
        except DomainError as exc:
            self._reject(exc, OperationKind.UPDATE)
            return False

        if is_temporary_id(entity_id):
            self._defer(entity_id, OperationKind.UPDATE, patch, self.apply_patch(current, patch))
            return True
        return await self._run(
            OperationKind.UPDATE,
            self.stage_update(current, patch, plan),
            lambda: self.store.update(entity_id, patch),
            linked=self.linked_updates(current, patch, plan),
        )

    async def delete(self, entity_id: str) -> bool:
        self._begin()
        current = self.get(entity_id)
        if current is None:
            self._reject(NotFoundError(f"{self.label.capitalize()} not found"), OperationKind.DELETE)
            return False
        try:
            self.check_delete(current)
        except DomainError as exc:
            self._reject(exc, OperationKind.DELETE)
            return False

        tombstone = current.model_copy(update={"is_deleted": True, "deleted_at": _now()})
        if is_temporary_id(entity_id):
            self._defer(entity_id, OperationKind.DELETE, {}, tombstone)
            return True
        return await self._run(
            OperationKind.DELETE, {entity_id: tombstone}, lambda: self.store.soft_delete(entity_id)
        )

    async def restore(self, entity_id: str) -> bool:
        """Restore directly; the entity reappears with the next snapshot."""
        self._begin()
        current = self.get(entity_id, include_deleted=True)
        if current is None:
            self._reject(NotFoundError(f"{self.label.capitalize()} not found"), OperationKind.UPDATE)
            return False
        try:
            self.check_restore(current)
        except DomainError as exc:
            self._reject(exc, OperationKind.UPDATE)
            return False
        return await self._run(OperationKind.UPDATE, {}, lambda: self.store.restore(entity_id))

    async def purge(self, entity_id: str) -> bool:
        self._begin()
        return await self._run(OperationKind.DELETE, {}, lambda: self.store.purge(entity_id))

    async def _run(
        self,
        operation: OperationKind,
        staged: Dict[str, T],
        remote: Callable[[], Awaitable[Any]],
        linked: Sequence[Tuple[OptimisticCollection, Dict[str, Any]]] = (),
    ) -> bool:
        key = self._stage(operation, staged)
        linked_keys = [
            (collection, collection._stage(operation, entities)) for collection, entities in linked
        ]
        try:
            await remote()
        except DomainError as exc:
            self._settle(key, operation)
            self._fail(exc, operation)
            return False
        finally:
            for collection, linked_key in linked_keys:
                collection._settle(linked_key, operation)
        self._settle(key, operation)
        return True

    # Pending entities with a temporary id

    def _defer(self, temp_id: str, operation: OperationKind, patch: Dict[str, Any], entity: T) -> None:
        """Patch a pending create in place and queue the call for its real id."""
        pending = self._overlay.get(temp_id)
        if pending is None:
            return
        self._overlay[temp_id] = replace(pending, entity=entity)
        self._deferred.setdefault(temp_id, []).append((operation, patch))
        self._notify()

    async def _replay(
        self, real_id: str, entity: T, deferred: List[Tuple[OperationKind, Dict[str, Any]]]
    ) -> None:
        patch: Dict[str, Any] = {}
        for operation, values in deferred:
            if operation is OperationKind.UPDATE:
                patch.update(values)
        if patch:
            if not await self._run(
                OperationKind.UPDATE, {real_id: entity}, lambda: self.store.update(real_id, patch)
            ):
                return
        if any(operation is OperationKind.DELETE for operation, _ in deferred):
            await self._run(OperationKind.DELETE, {real_id: entity}, lambda: self.store.soft_delete(real_id))

    # Overlay bookkeeping

    def _stage(self, operation: OperationKind, staged: Dict[str, T]) -> str:
        key = f"{operation.value}_{next(self._keys)}"
        for entity_id, entity in staged.items():
            self._overlay[entity_id] = Pending(entity, operation, key)
        self._in_flight[operation] += 1
        self._notify()
        return key

    def _settle(self, key: str, operation: OperationKind) -> None:
        for entity_id in [eid for eid, pending in self._overlay.items() if pending.optimistic_key == key]:
            del self._overlay[entity_id]
        self._in_flight[operation] -= 1
        self._notify()

    # Error slot

    def _begin(self) -> None:
        self._cancel_error_timer()
        self.error = None
        self.failure = None

    def _reject(self, exc: DomainError, operation: OperationKind) -> None:
        logger.warning(f"{self.label.capitalize()} {operation.value} rejected: {exc}")
        self.error = str(exc)
        self.failure = exc
        self._notify()

    def _fail(self, exc: DomainError, operation: OperationKind) -> None:
        logger.error(f"{self.label.capitalize()} {operation.value} failed: {exc}")
        self.error = str(exc) or f"Failed to {operation.value} {self.label}"
        self.failure = exc
        if self.retry_count < self.settings.MAX_RETRY_COUNT:
            delay = self.settings.RETRY_DELAY_MS * (self.retry_count + 1) / 1000
            self._cancel_error_timer()
            self._error_timer = asyncio.get_running_loop().call_later(delay, self._auto_clear)
        self._notify()

    def _auto_clear(self) -> None:
        self._error_timer = None
        self.retry_count += 1
        self.error = None
        self.failure = None
        self._notify()

    def _cancel_error_timer(self) -> None:
        if self._error_timer is not None:
            self._error_timer.cancel()
            self._error_timer = None

    def clear_error(self) -> None:
        self._cancel_error_timer()
        self.error = None
        self.failure = None
        self.retry_count = 0
        self._notify()

    def retry(self) -> None:
        """Clear the error state and discard every overlay entry; nothing is resubmitted."""
        self._overlay.clear()
        self._deferred.clear()
        self.clear_error()

from __future__ import annotations

from typing import Optional

from flowx.application.event_handlers import register_event_handlers
from flowx.application.workspace import Workspace
from flowx.config import Settings, settings
from flowx.store.interface import RemoteStoreClient
from flowx.store.memory import InMemoryRemoteStore

_store: Optional[InMemoryRemoteStore] = None


def build_store(config: Optional[Settings] = None) -> InMemoryRemoteStore:
    store = InMemoryRemoteStore(config or settings)
    register_event_handlers(store.publisher, store.tables.activity)
    return store


def get_store() -> InMemoryRemoteStore:
    global _store
    if _store is None:
        _store = build_store()
    return _store


def get_workspace(client: Optional[RemoteStoreClient] = None, config: Optional[Settings] = None) -> Workspace:
    return Workspace(client or get_store(), config or settings)

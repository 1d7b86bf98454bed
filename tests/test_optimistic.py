"""Tests for the optimistic mutation engine (merged view, rollback, error window)."""
from __future__ import annotations

import asyncio
import pytest
from unittest.mock import AsyncMock, Mock

from flowx.application.folder_manager import FolderManager
from flowx.application.optimistic import (
    Confirmed,
    OperationKind,
    Pending,
    is_temporary_id,
    merge_entities,
)
from flowx.domain.errors import RemoteCallError
from flowx.store.subscription import LOADING, Snapshot


@pytest.fixture
def entity_store():
    """EntityStore double; every remote call succeeds unless a test says otherwise."""
    store = Mock()
    store.subscribe = Mock(return_value=Mock())
    store.create = AsyncMock(return_value="real-1")
    store.update = AsyncMock(return_value=None)
    store.soft_delete = AsyncMock(return_value=None)
    store.restore = AsyncMock(return_value=None)
    store.purge = AsyncMock(return_value=None)
    return store


@pytest.fixture
def manager(entity_store, fast_settings):
    manager = FolderManager(entity_store, fast_settings)
    manager.start()
    return manager


def deliver(entity_store, value):
    callback = entity_store.subscribe.call_args.args[0]
    callback(value)


class TestMergeEntities:
    """Pure merge of confirmed snapshot and overlay."""

    def test_one_entry_per_id_overlay_wins(self, make_folder):
        a = make_folder("a", "A")
        b = make_folder("b", "B")
        edited = a.model_copy(update={"color": "#000000"})
        created = make_folder("temp_x_1", "New")
        overlay = {
            "a": Pending(edited, OperationKind.UPDATE, "update_1"),
            "temp_x_1": Pending(created, OperationKind.CREATE, "create_2"),
        }

        merged = merge_entities({"a": a, "b": b}, overlay)

        assert list(merged) == ["a", "b", "temp_x_1"]
        assert merged["a"].entity.color == "#000000"
        assert merged["a"].is_optimistic
        assert merged["b"] == Confirmed(b)
        assert not merged["b"].is_optimistic

    def test_empty_inputs(self):
        assert merge_entities({}, {}) == {}

    def test_temporary_ids(self):
        assert is_temporary_id("temp_ab12_3")
        assert not is_temporary_id("8d4c0b1e")


class TestLoadingState:
    """Loading is distinct from loaded-but-empty."""

    def test_loading_until_first_snapshot(self, manager, entity_store):
        assert manager.is_loading
        deliver(entity_store, LOADING)
        assert manager.is_loading
        deliver(entity_store, Snapshot([]))
        assert not manager.is_loading
        assert manager.entities == []

    def test_soft_deleted_excluded_but_addressable(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A"), make_folder("b", "B", is_deleted=True)]))
        assert [f.id for f in manager.entities] == ["a"]
        assert manager.get("b") is None
        assert manager.get("b", include_deleted=True).id == "b"


class TestCreate:
    """Optimistic create and rollback."""

    def test_optimistic_entry_precedes_remote_call(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))
        seen = {}

        async def create(payload):
            seen["entries"] = manager.entries
            seen["creating"] = manager.is_creating
            return "real-1"

        entity_store.create.side_effect = create

        async def scenario():
            return await manager.create({"name": "Docs"})

        assert asyncio.run(scenario()) == "real-1"
        [entry] = seen["entries"]
        assert isinstance(entry, Pending)
        assert entry.operation is OperationKind.CREATE
        assert is_temporary_id(entry.entity.id)
        assert entry.entity.path == "/Docs"
        assert seen["creating"] is True
        assert manager.entries == []
        assert not manager.is_creating

    def test_failed_create_rolls_back(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))
        entity_store.create.side_effect = RemoteCallError("Store unreachable", code="unavailable")

        async def scenario():
            result = await manager.create({"name": "Docs"})
            manager.clear_error()
            return result

        assert asyncio.run(scenario()) is None
        assert not any(is_temporary_id(f.id) for f in manager.all_entities)
        assert manager.entries == []

    def test_validation_failure_skips_remote_call(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))

        async def scenario():
            return await manager.create({"name": "bad/name"})

        assert asyncio.run(scenario()) is None
        entity_store.create.assert_not_called()
        assert "letters, numbers" in manager.error

    def test_validation_error_does_not_leak_into_next_create(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))

        async def scenario():
            await manager.create({"name": ""})
            assert manager.error is not None
            return await manager.create({"name": "Docs"})

        assert asyncio.run(scenario()) == "real-1"
        assert manager.error is None

    def test_updates_to_pending_entity_are_replayed(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))

        async def scenario():
            gate = asyncio.Event()

            async def create(payload):
                await gate.wait()
                return "real-1"

            entity_store.create.side_effect = create
            task = asyncio.create_task(manager.create({"name": "Docs"}))
            await asyncio.sleep(0)
            [pending] = manager.entities
            assert await manager.update(pending.id, {"color": "#00FF00"}) is True
            assert manager.get(pending.id).color == "#00FF00"
            entity_store.update.assert_not_called()
            gate.set()
            return await task

        assert asyncio.run(scenario()) == "real-1"
        entity_store.update.assert_awaited_once_with("real-1", {"color": "#00FF00"})

    def test_queued_updates_dropped_when_create_fails(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))

        async def scenario():
            gate = asyncio.Event()

            async def create(payload):
                await gate.wait()
                raise RemoteCallError("rejected")

            entity_store.create.side_effect = create
            task = asyncio.create_task(manager.create({"name": "Docs"}))
            await asyncio.sleep(0)
            [pending] = manager.entities
            await manager.update(pending.id, {"color": "#00FF00"})
            gate.set()
            result = await task
            manager.clear_error()
            return result

        assert asyncio.run(scenario()) is None
        entity_store.update.assert_not_called()
        assert manager.entries == []


class TestUpdateAndDelete:
    """Overlay entries for updates and deletes."""

    def test_failed_update_reverts_to_confirmed(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A", color="#111111")]))

        async def scenario():
            seen = {}

            async def update(entity_id, patch):
                seen["color"] = manager.get("a").color
                raise RemoteCallError("write conflict")

            entity_store.update.side_effect = update
            result = await manager.update("a", {"color": "#222222"})
            manager.clear_error()
            return result, seen

        result, seen = asyncio.run(scenario())
        assert result is False
        assert seen["color"] == "#222222"
        assert manager.get("a").color == "#111111"

    def test_later_update_survives_earlier_settlement(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A")]))

        async def scenario():
            gates = {"#111111": asyncio.Event(), "#222222": asyncio.Event()}

            async def update(entity_id, patch):
                await gates[patch["color"]].wait()

            entity_store.update.side_effect = update
            first = asyncio.create_task(manager.update("a", {"color": "#111111"}))
            second = asyncio.create_task(manager.update("a", {"color": "#222222"}))
            await asyncio.sleep(0)
            gates["#111111"].set()
            await first
            entry = manager.entry("a")
            gates["#222222"].set()
            await second
            return entry

        entry = asyncio.run(scenario())
        assert entry.is_optimistic
        assert entry.entity.color == "#222222"
        assert not manager.entry("a").is_optimistic

    def test_delete_hides_entity_while_in_flight(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A")]))
        seen = {}

        async def soft_delete(entity_id):
            seen["visible"] = [f.id for f in manager.entities]
            seen["tombstone"] = manager.get("a", include_deleted=True)

        entity_store.soft_delete.side_effect = soft_delete

        async def scenario():
            return await manager.delete("a")

        assert asyncio.run(scenario()) is True
        assert seen["visible"] == []
        assert seen["tombstone"].is_deleted
        assert seen["tombstone"].deleted_at is not None

    def test_unknown_entity(self, manager, entity_store):
        deliver(entity_store, Snapshot([]))

        async def scenario():
            return await manager.update("missing", {"color": "#000000"})

        assert asyncio.run(scenario()) is False
        assert manager.error == "Folder not found"
        entity_store.update.assert_not_called()


class TestErrorWindow:
    """Bounded automatic clearing of remote errors."""

    def test_error_cleared_after_backoff(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A")]))
        entity_store.update.side_effect = RemoteCallError("timeout")

        async def scenario():
            await manager.update("a", {"color": "#222222"})
            assert manager.error == "timeout"
            assert manager.retry_count == 0
            await asyncio.sleep(0.06)

        asyncio.run(scenario())
        assert manager.error is None
        assert manager.retry_count == 1

    def test_no_automatic_clear_at_cap(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A")]))
        entity_store.update.side_effect = RemoteCallError("timeout")
        manager.retry_count = 3

        async def scenario():
            await manager.update("a", {"color": "#222222"})
            await asyncio.sleep(0.06)

        asyncio.run(scenario())
        assert manager.error == "timeout"
        assert manager.retry_count == 3

    def test_clear_error_resets_retry_count(self, manager):
        manager.retry_count = 2
        manager.error = "old"
        manager.clear_error()
        assert manager.error is None
        assert manager.retry_count == 0

    def test_retry_discards_overlay(self, manager, entity_store, make_folder):
        deliver(entity_store, Snapshot([make_folder("a", "A", color="#111111")]))

        async def scenario():
            gate = asyncio.Event()

            async def update(entity_id, patch):
                await gate.wait()

            entity_store.update.side_effect = update
            task = asyncio.create_task(manager.update("a", {"color": "#222222"}))
            await asyncio.sleep(0)
            assert manager.get("a").color == "#222222"
            manager.retry()
            color = manager.get("a").color
            gate.set()
            await task
            return color

        assert asyncio.run(scenario()) == "#111111"
        assert manager.error is None


class TestListeners:
    """Change notification."""

    def test_listener_called_and_unsubscribed(self, manager, entity_store):
        calls = []
        unsubscribe = manager.subscribe(lambda: calls.append(1))
        deliver(entity_store, Snapshot([]))
        assert len(calls) == 1
        unsubscribe()
        deliver(entity_store, Snapshot([]))
        assert len(calls) == 1

"""Tests for the in-memory reference store: push delivery and server-side rules."""
from __future__ import annotations

import asyncio
import pytest

from flowx.dependencies import build_store
from flowx.domain.errors import NotFoundError, RemoteCallError
from flowx.store.subscription import LOADING, Snapshot


async def settle(rounds=3):
    for _ in range(rounds):
        await asyncio.sleep(0)


def nodes(*ids):
    return [{"id": node_id, "position": {"x": 0, "y": 0}} for node_id in ids]


@pytest.fixture
def project_id(store):
    return store.execute("projects:create", {"name": "Webinar Funnel"})


@pytest.fixture
def flow_id(store, project_id):
    return store.execute("flows:create", {"project_id": project_id})


class TestSubscriptions:
    """LOADING first, then a snapshot each time the result changes."""

    def test_loading_then_snapshot(self, store):
        results = []

        async def scenario():
            await store.connect()
            store.subscribe("folders:list", {}, results.append)
            assert results == [LOADING]
            await settle()

        asyncio.run(scenario())
        assert results == [LOADING, Snapshot([])]

    def test_only_changed_results_delivered(self, store, project_id):
        results = []

        async def scenario():
            await store.connect()
            store.subscribe("flows:getComplete", {"project_id": project_id}, results.append)
            await settle()
            await store.mutation("folders:create", {"name": "Unrelated"})
            await settle()
            assert len(results) == 2
            await store.mutation("flows:create", {"project_id": project_id})
            await settle()

        asyncio.run(scenario())
        assert results[1] == Snapshot(None)
        assert len(results) == 3
        assert results[2].value["flow"]["project_id"] == project_id

    def test_nothing_delivered_while_disconnected(self, store):
        results = []

        async def scenario():
            store.subscribe("projects:list", {}, results.append)
            await settle()
            assert results == [LOADING]
            await store.connect()
            await settle()

        asyncio.run(scenario())
        assert results == [LOADING, Snapshot([])]

    def test_cancelled_subscription_receives_nothing(self, store):
        results = []

        async def scenario():
            await store.connect()
            subscription = store.subscribe("folders:list", {}, results.append)
            await settle()
            subscription.cancel()
            await store.mutation("folders:create", {"name": "Later"})
            await settle()

        asyncio.run(scenario())
        assert len(results) == 2

    def test_unknown_query(self, store):
        with pytest.raises(RemoteCallError) as exc_info:
            store.subscribe("widgets:list", {}, lambda result: None)
        assert exc_info.value.code == "not_found"

    def test_mutation_while_disconnected(self, store):
        async def scenario():
            await store.mutation("folders:create", {"name": "Offline"})

        with pytest.raises(RemoteCallError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.code == "unavailable"
        assert store.calls == []
        assert store.folders.records() == []


class TestFlowBatches:
    """Full-replace writes of nodes and edges."""

    def test_dangling_edge_rejected(self, store, flow_id):
        edges = [{"id": "e1", "source": "n1", "target": "n9"}]
        with pytest.raises(RemoteCallError, match="Edge e1 references a missing node") as exc_info:
            store.execute("flows:saveBatch", {"flow_id": flow_id, "nodes": nodes("n1"), "edges": edges})
        assert exc_info.value.code == "validation"

    def test_duplicate_node_ids_rejected(self, store, flow_id):
        with pytest.raises(RemoteCallError, match="Duplicate node ids"):
            store.execute("flows:saveBatch", {"flow_id": flow_id, "nodes": nodes("n1", "n1"), "edges": []})

    def test_replace_keeps_creation_order(self, store, project_id, flow_id):
        store.execute("flows:saveBatch", {"flow_id": flow_id, "nodes": nodes("n1", "n2", "n3")})
        store.execute("flows:saveBatch", {"flow_id": flow_id, "nodes": nodes("n3", "n1", "n4")})

        complete = store.flows.get_complete(project_id)
        assert [n["id"] for n in complete["nodes"]] == ["n1", "n3", "n4"]

    def test_project_counts_follow_batch(self, store, project_id, flow_id):
        store.execute(
            "flows:saveBatch",
            {
                "flow_id": flow_id,
                "nodes": nodes("a", "b"),
                "edges": [{"id": "ab", "source": "a", "target": "b"}],
            },
        )
        metadata = store.projects.get(project_id).metadata
        assert (metadata.node_count, metadata.edge_count) == (2, 1)

    def test_update_viewport(self, store, flow_id):
        store.execute("flows:updateViewport", {"flow_id": flow_id, "viewport": {"x": 10, "y": 20, "zoom": 0.5}})
        viewport = store.flows.get(flow_id).viewport
        assert (viewport.x, viewport.y, viewport.zoom) == (10, 20, 0.5)

    def test_new_flow_replaces_active_one(self, store, project_id, flow_id):
        newer = store.execute("flows:create", {"project_id": project_id, "name": "Second"})
        assert store.flows.get_complete(project_id)["flow"]["id"] == newer
        assert store.flows.get(flow_id).is_active is False

    def test_flow_for_missing_project(self, store):
        with pytest.raises(RemoteCallError) as exc_info:
            store.execute("flows:create", {"project_id": "nope"})
        assert exc_info.value.code == "not_found"


class TestProjectLifecycle:
    """Purge, duplicate and restore rules."""

    def test_purge_removes_flows(self, store, project_id, flow_id):
        store.execute("flows:saveBatch", {"flow_id": flow_id, "nodes": nodes("n1")})
        store.execute("projects:purge", {"id": project_id})

        assert store.projects.records() == []
        with pytest.raises(NotFoundError):
            store.flows.get(flow_id)
        assert flow_id not in store.tables.table("flow_nodes")

    def test_duplicate_copies_active_flow(self, store, project_id, flow_id):
        store.execute(
            "flows:saveBatch",
            {"flow_id": flow_id, "nodes": nodes("a", "b"), "edges": [{"id": "ab", "source": "a", "target": "b"}]},
        )
        store.execute("projects:update", {"id": project_id, "patch": {"status": "active"}})

        copy_id = store.execute("projects:duplicate", {"id": project_id})

        copy = store.projects.get(copy_id)
        assert copy.name == "Webinar Funnel (Copy)"
        assert copy.status.value == "draft"
        assert copy.metadata.node_count == 2
        complete = store.flows.get_complete(copy_id)
        assert complete["flow"]["id"] != flow_id
        assert [n["id"] for n in complete["nodes"]] == ["a", "b"]
        assert [e["id"] for e in complete["edges"]] == ["ab"]

    def test_restore_under_deleted_folder_refused(self, store):
        folder_id = store.execute("folders:create", {"name": "Old"})
        project_id = store.execute("projects:create", {"name": "Inside", "folder_id": folder_id})
        store.execute("projects:delete", {"id": project_id})
        store.execute("folders:delete", {"id": folder_id})

        with pytest.raises(RemoteCallError) as exc_info:
            store.execute("projects:restore", {"id": project_id})
        assert exc_info.value.code == "invariant_violation"

    def test_folder_purge_refused_while_referenced(self, store):
        folder_id = store.execute("folders:create", {"name": "Old"})
        project_id = store.execute("projects:create", {"name": "Inside", "folder_id": folder_id})
        store.execute("projects:delete", {"id": project_id})
        store.execute("folders:delete", {"id": folder_id})

        with pytest.raises(RemoteCallError, match="Cannot purge folder"):
            store.execute("folders:purge", {"id": folder_id})

        store.execute("projects:purge", {"id": project_id})
        store.execute("folders:purge", {"id": folder_id})
        assert store.folders.records() == []

    def test_duplicate_sibling_is_conflict(self, store):
        store.execute("folders:create", {"name": "Reports"})
        with pytest.raises(RemoteCallError) as exc_info:
            store.execute("folders:create", {"name": "reports"})
        assert exc_info.value.code == "conflict"

    def test_folder_stats_query(self, store):
        parent = store.execute("folders:create", {"name": "Parent"})
        child = store.execute("folders:create", {"name": "Child", "parent_id": parent})
        store.execute("projects:create", {"name": "Top Level", "folder_id": parent})
        store.execute("projects:create", {"name": "Nested One", "folder_id": child})

        stats = store.query("folders:stats", {"id": parent})
        assert stats["project_count"] == 1
        assert stats["subfolder_count"] == 1
        assert stats["total_projects"] == 2
        assert stats["last_activity"] is not None
        assert store.query("folders:stats", {"id": "missing"}) is None


class TestActivityAndPersistence:
    """Activity entries and the optional JSON snapshot file."""

    def test_activity_entries_newest_first(self, store, project_id):
        folder_id = store.execute("folders:create", {"name": "Clients"})

        entries = store.query("activity:list", {"limit": 10})
        assert [(e["entity_type"], e["action"]) for e in entries] == [
            ("folder", "created"),
            ("project", "created"),
        ]
        assert entries[0]["entity_id"] == folder_id
        assert entries[0]["details"]["path"] == "/Clients"

        filtered = store.query("activity:list", {"entity_id": project_id})
        assert [e["entity_id"] for e in filtered] == [project_id]

    def test_rename_recorded_once_with_touched_ids(self, store):
        parent = store.execute("folders:create", {"name": "A"})
        child = store.execute("folders:create", {"name": "B", "parent_id": parent})
        store.execute("folders:update", {"id": parent, "patch": {"name": "Z"}})

        [rewrite] = [e for e in store.tables.activity if e["action"] == "paths_rewritten"]
        assert rewrite["details"]["old_path"] == "/A"
        assert rewrite["details"]["new_path"] == "/Z"
        assert set(rewrite["details"]["folder_ids"]) == {parent, child}

    def test_snapshot_file_round_trip(self, fast_settings, tmp_path):
        config = fast_settings.model_copy(update={"STORE_SNAPSHOT_FILE": str(tmp_path / "data" / "store.json")})
        first = build_store(config)
        folder_id = first.execute("folders:create", {"name": "Kept"})

        second = build_store(config)
        assert second.folders.get(folder_id).path == "/Kept"
        assert [e["action"] for e in second.tables.activity] == ["created"]

    def test_unreadable_snapshot_ignored(self, fast_settings, tmp_path):
        snapshot = tmp_path / "store.json"
        snapshot.write_text("{not json")
        store = build_store(fast_settings.model_copy(update={"STORE_SNAPSHOT_FILE": str(snapshot)}))
        assert store.folders.records() == []

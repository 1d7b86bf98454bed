"""Tests for the folder hierarchy manager running against the reference store."""
from __future__ import annotations

import asyncio
import pytest
from unittest.mock import patch

from flowx.application.workspace import Workspace
from flowx.dependencies import build_store
from flowx.domain.paths import plan_relocation


async def settle(rounds=3):
    """Let pending snapshot deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def open_workspace(store, settings):
    workspace = Workspace(store, settings)
    await workspace.start()
    await settle()
    return workspace


async def create_folder(workspace, name, parent_id=None, **extra):
    folder_id = await workspace.folders.create({"name": name, "parent_id": parent_id, **extra})
    await settle()
    return folder_id


class TestFolderCreation:
    """Creating folders under the hierarchy rules."""

    def test_paths_and_depths(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            b = await create_folder(ws, "B", a)
            folders = {f.id: (f.path, f.depth) for f in ws.folders.entities}
            await ws.close()
            return a, b, folders

        a, b, folders = asyncio.run(scenario())
        assert folders == {a: ("/A", 1), b: ("/A/B", 2)}

    def test_duplicate_sibling_name_rejected_without_remote_call(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            await create_folder(ws, "budget")
            result = await ws.folders.create({"name": "Budget"})
            error = ws.folders.error
            await ws.close()
            return result, error

        result, error = asyncio.run(scenario())
        assert result is None
        assert error == "A folder with this name already exists in the same location"
        assert store.call_count("folders:create") == 1

    def test_same_name_allowed_under_different_parents(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            nested = await create_folder(ws, "A", a)
            await ws.close()
            return nested

        assert asyncio.run(scenario()) is not None

    def test_parent_must_allow_subfolders(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            closed = await create_folder(ws, "Closed", allow_subfolders=False)
            result = await ws.folders.create({"name": "Child", "parent_id": closed})
            error = ws.folders.error
            await ws.close()
            return result, error

        result, error = asyncio.run(scenario())
        assert result is None
        assert error == "Parent folder does not allow subfolders"

    def test_depth_limit(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            parent = None
            for level in range(1, 11):
                parent = await create_folder(ws, f"L{level}", parent)
            deepest = ws.folders.get(parent)
            result = await ws.folders.create({"name": "L11", "parent_id": parent})
            error = ws.folders.error
            await ws.close()
            return deepest, result, error

        deepest, result, error = asyncio.run(scenario())
        assert deepest.depth == 10
        assert result is None
        assert error == "Maximum folder depth of 10 exceeded"


class TestRenameAndMove:
    """Path rewrites across a subtree and its projects."""

    def test_rename_cascade(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            b = await create_folder(ws, "B", a)
            c = await create_folder(ws, "C", b)
            project = await ws.projects.create({"name": "Landing Page", "folder_id": b})
            await settle()

            assert await ws.folders.update(a, {"name": "Z"}) is True
            await settle()
            result = (
                {f.id: f.path for f in ws.folders.entities},
                ws.projects.get(project).folder_path,
                (a, b, c),
            )
            await ws.close()
            return result

        paths, project_path, (a, b, c) = asyncio.run(scenario())
        assert (paths, project_path) == ({a: "/Z", b: "/Z/B", c: "/Z/B/C"}, "/Z/B")

    def test_rename_planned_once(self, store, fast_settings):
        """Test that one rename reads the hierarchy once for all its staging."""
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            await create_folder(ws, "B", a)
            await ws.projects.create({"name": "Landing Page", "folder_id": a})
            await settle()

            with patch("flowx.application.folder_manager.plan_relocation", wraps=plan_relocation) as planner:
                assert await ws.folders.update(a, {"name": "Z"}) is True
            await ws.close()
            return planner.call_count

        assert asyncio.run(scenario()) == 1

    def test_rename_staged_optimistically_across_collections(self, fast_settings):
        slow = fast_settings.model_copy(update={"STORE_LATENCY_MS": 30})
        store = build_store(slow)

        async def scenario():
            ws = await open_workspace(store, slow)
            a = await create_folder(ws, "A")
            b = await create_folder(ws, "B", a)
            project = await ws.projects.create({"name": "Landing Page", "folder_id": b})
            await settle()

            task = asyncio.create_task(ws.folders.update(a, {"name": "Z"}))
            await asyncio.sleep(0.01)
            during = (ws.folders.get(b).path, ws.projects.get(project).folder_path)
            await task
            await settle()
            after = (ws.folders.get(b).path, ws.projects.get(project).folder_path)
            await ws.close()
            return during, after

        during, after = asyncio.run(scenario())
        assert during == ("/Z/B", "/Z/B")
        assert after == ("/Z/B", "/Z/B")

    def test_move_subtree(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            b = await create_folder(ws, "B", a)
            c = await create_folder(ws, "C", b)
            other = await create_folder(ws, "Other")
            assert await ws.folders.move(b, other) is True
            await settle()
            paths = {f.id: f.path for f in ws.folders.entities}
            await ws.close()
            return paths, b, c

        paths, b, c = asyncio.run(scenario())
        assert paths[b] == "/Other/B"
        assert paths[c] == "/Other/B/C"

    def test_move_into_descendant_refused(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            b = await create_folder(ws, "B", a)
            result = await ws.folders.move(a, b)
            error = ws.folders.error
            path = ws.folders.get(a).path
            await ws.close()
            return result, error, path

        result, error, path = asyncio.run(scenario())
        assert result is False
        assert error == "A folder cannot be moved into itself or one of its subfolders"
        assert path == "/A"
        assert store.call_count("folders:update") == 0

    def test_rename_to_sibling_name_refused(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            await create_folder(ws, "Reports")
            drafts = await create_folder(ws, "Drafts")
            result = await ws.folders.update(drafts, {"name": "reports"})
            await ws.close()
            return result

        assert asyncio.run(scenario()) is False
        assert store.call_count("folders:update") == 0


class TestDeleteAndRestore:
    """Delete and restore guards."""

    def test_delete_guard_projects(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            folder = await create_folder(ws, "Campaigns")
            await ws.projects.create({"name": "Spring Sale", "folder_id": folder})
            await settle()
            result = await ws.folders.delete(folder)
            error = ws.folders.error
            deleted = ws.folders.get(folder, include_deleted=True).is_deleted
            await ws.close()
            return result, error, deleted

        result, error, deleted = asyncio.run(scenario())
        assert result is False
        assert error == "Cannot delete folder with projects. Move or delete projects first."
        assert deleted is False
        assert store.call_count("folders:delete") == 0

    def test_delete_guard_subfolders(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            parent = await create_folder(ws, "Parent")
            await create_folder(ws, "Child", parent)
            result = await ws.folders.delete(parent)
            error = ws.folders.error
            await ws.close()
            return result, error

        result, error = asyncio.run(scenario())
        assert result is False
        assert error == "Cannot delete folder with subfolders. Delete subfolders first."

    def test_restore_guard(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            parent = await create_folder(ws, "Parent")
            child = await create_folder(ws, "Child", parent)
            assert await ws.folders.delete(child)
            await settle()
            assert await ws.folders.delete(parent)
            await settle()
            deleted = {f.id for f in ws.folders.deleted_folders}
            result = await ws.folders.restore(child)
            error = ws.folders.error
            restored_parent = await ws.folders.restore(parent)
            await settle()
            restored_child = await ws.folders.restore(child)
            await settle()
            live = {f.id for f in ws.folders.entities}
            await ws.close()
            return deleted, result, error, restored_parent, restored_child, live, (parent, child)

        deleted, result, error, restored_parent, restored_child, live, ids = asyncio.run(scenario())
        assert deleted == set(ids)
        assert result is False
        assert error == "Cannot restore folder: parent folder no longer exists"
        assert restored_parent is True
        assert restored_child is True
        assert live == set(ids)


class TestDerivedViews:
    """Tree, counts and lookups."""

    def test_tree_sorted_by_name_with_counts(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            beta = await create_folder(ws, "beta")
            await create_folder(ws, "Alpha")
            await create_folder(ws, "child", beta)
            await ws.projects.create({"name": "Webinar Funnel", "folder_id": beta})
            await settle()
            ws.folders.toggle_expanded(beta)
            tree = ws.folders.folder_tree()
            annotated = {f.name: f for f in ws.folders.folders}
            stats = ws.folders.folder_stats(beta)
            by_path = ws.folders.get_folder_by_path("/beta/child")
            await ws.close()
            return tree, annotated, stats, by_path

        tree, annotated, stats, by_path = asyncio.run(scenario())
        assert [node.folder.name for node in tree] == ["Alpha", "beta"]
        assert [node.folder.name for node in tree[1].children] == ["child"]
        assert tree[1].is_expanded is True
        assert annotated["beta"].project_count == 1
        assert annotated["beta"].subfolder_count == 1
        assert annotated["Alpha"].project_count == 0
        assert stats["total_projects"] == 1
        assert by_path.name == "child"

    def test_ancestors_and_descendants(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            b = await create_folder(ws, "B", a)
            c = await create_folder(ws, "C", b)
            result = (
                [f.name for f in ws.folders.ancestors_of(c)],
                sorted(f.name for f in ws.folders.descendants_of(a)),
                [f.name for f in ws.folders.children_of(None)],
                ws.folders.build_folder_path(b),
                ws.folders.inconsistent_paths(),
            )
            await ws.close()
            return result

        ancestors, descendants, roots, path, broken = asyncio.run(scenario())
        assert ancestors == ["A", "B"]
        assert descendants == ["B", "C"]
        assert roots == ["A"]
        assert path == "/A/B"
        assert broken == []

    def test_overview(self, store, fast_settings):
        async def scenario():
            ws = await open_workspace(store, fast_settings)
            a = await create_folder(ws, "A")
            await create_folder(ws, "B", a)
            overview = ws.folders.overview()
            await ws.close()
            return overview

        overview = asyncio.run(scenario())
        assert overview["total_folders"] == 2
        assert overview["folders_by_depth"] == {1: 1, 2: 1}

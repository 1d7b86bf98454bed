"""
Test configuration and fixtures for flowx tests.
"""
import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient

from flowx.main import app
from flowx.config import Settings
from flowx.dependencies import build_store, get_store
from flowx.domain.entities import CanvasEdge, CanvasNode, Folder, Position, Project, ProjectMetadata


@pytest.fixture
def fast_settings():
    """Settings with millisecond-scale timers so async scenarios finish quickly."""
    return Settings(
        AUTOSAVE_DELAY_MS=50,
        NEW_NODE_SAVE_DELAY_MS=5,
        RETRY_DELAY_MS=20,
        MAX_RETRY_COUNT=3,
        STORE_SNAPSHOT_FILE="",
        STORE_LATENCY_MS=0,
    )


@pytest.fixture
def store(fast_settings):
    """Reference store with the audit and activity handlers registered."""
    return build_store(fast_settings)


@pytest.fixture
def client(store):
    """Create test client bound to a fresh store."""
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_folder():
    """Factory for folder entities without going through a store."""
    def factory(folder_id, name, parent=None, **overrides):
        path = f"{parent.path}/{name}" if parent else f"/{name}"
        data = {
            "id": folder_id,
            "name": name,
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "parent_id": parent.id if parent else None,
            "path": path,
            "depth": path.count("/"),
        }
        data.update(overrides)
        return Folder(**data)
    return factory


@pytest.fixture
def make_project():
    """Factory for project entities without going through a store."""
    def factory(project_id, name, folder=None, **overrides):
        data = {
            "id": project_id,
            "name": name,
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "folder_id": folder.id if folder else None,
            "folder_path": folder.path if folder else None,
            "metadata": ProjectMetadata(last_modified=datetime(2024, 1, 2, tzinfo=timezone.utc)),
        }
        data.update(overrides)
        return Project(**data)
    return factory


def node(node_id, x=0.0, y=0.0, label=""):
    return CanvasNode(id=node_id, position=Position(x=x, y=y), data={"label": label or node_id})


def edge(edge_id, source, target):
    return CanvasEdge(id=edge_id, source=source, target=target)


@pytest.fixture
def make_node():
    return node


@pytest.fixture
def make_edge():
    return edge

"""Composition root for one client session over a remote store."""
from __future__ import annotations

import logging
from typing import Optional

from flowx.application.canvas_sync import CanvasSync
from flowx.application.folder_manager import FolderManager
from flowx.application.project_manager import ProjectManager
from flowx.config import Settings, settings as default_settings
from flowx.domain.entities import Folder, Project
from flowx.store.adapters import EntityStore, FlowStore
from flowx.store.interface import RemoteStoreClient

logger = logging.getLogger(__name__)


class Workspace:
    """Folder and project collections plus the canvas, sharing one client."""

    def __init__(self, client: RemoteStoreClient, settings: Optional[Settings] = None) -> None:
        self.client = client
        self.settings = settings or default_settings

        self.folders = FolderManager(EntityStore(client, "folders", Folder), self.settings)
        self.projects = ProjectManager(EntityStore(client, "projects", Project), self.settings)
        self.folders.bind_projects(self.projects)
        self.projects.bind_folders(self.folders)
        self.canvas = CanvasSync(FlowStore(client), self.settings)

    async def start(self) -> None:
        """Subscribe the collections, then connect; first snapshots follow the connect."""
        self.folders.start()
        self.projects.start()
        if not self.client.connected:
            await self.client.connect()
        logger.info("Workspace started")

    def open_project(self, project_id: Optional[str]) -> None:
        project = self.projects.get(project_id) if project_id else None
        self.canvas.select_project(project_id, project.name if project else None)

    async def close(self) -> None:
        self.canvas.close()
        await self.canvas.wait_idle()
        self.folders.stop()
        self.projects.stop()
        logger.info("Workspace closed")

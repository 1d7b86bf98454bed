from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TABLES = ("folders", "projects", "flows", "flow_nodes", "flow_edges")


class TableStore:
    """JSON-serializable tables backing the in-memory remote store.

    ``folders``, ``projects`` and ``flows`` map id -> record;
    ``flow_nodes`` and ``flow_edges`` map flow id -> records in creation
    order; ``activity`` is an append-only list. With a ``snapshot_file``
    every commit is written to disk and the file is loaded on start.
    """

    def __init__(self, snapshot_file: Optional[Path] = None) -> None:
        self.snapshot_file = snapshot_file
        if self.snapshot_file is not None:
            self.snapshot_file.parent.mkdir(parents=True, exist_ok=True)
        self.data: Dict[str, Any] = self._load()
        self.revision = 0

    @staticmethod
    def _empty() -> Dict[str, Any]:
        data: Dict[str, Any] = {table: {} for table in TABLES}
        data["activity"] = []
        return data

    def _load(self) -> Dict[str, Any]:
        if self.snapshot_file is not None and self.snapshot_file.exists():
            try:
                with self.snapshot_file.open("r", encoding="utf-8") as handle:
                    raw = json.load(handle)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring unreadable store snapshot {self.snapshot_file}")
                return self._empty()
            if isinstance(raw, dict):
                for table in TABLES:
                    raw.setdefault(table, {})
                raw.setdefault("activity", [])
                return raw
        return self._empty()

    def table(self, name: str) -> Dict[str, Any]:
        return self.data[name]

    @property
    def activity(self) -> List[Dict[str, Any]]:
        return self.data["activity"]

    def commit(self) -> None:
        """Mark the end of one mutation; persists when a snapshot file is set."""
        self.revision += 1
        if self.snapshot_file is not None:
            with self.snapshot_file.open("w", encoding="utf-8") as handle:
                json.dump(self.data, handle, indent=2)

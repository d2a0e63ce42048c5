"""Key pool persistence.

The coordinator treats persistence as a black box: after every mutation it
hands a snapshot dict to ``PoolStore.save``. :class:`JsonPoolStore` keeps
that snapshot in a JSON file, by default ``storage/pool_state.json``, so the
pool survives restarts without any other backend.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

LOGGER = logging.getLogger(__name__)

STATE_PATH = Path(__file__).resolve().parent / "pool_state.json"


class PoolStore(Protocol):
    """Load/save contract for pool snapshots."""

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the last saved snapshot or None when nothing was saved."""

    def save(self, snapshot: Dict[str, Any]) -> None:
        """Persist a snapshot produced by ``PoolCoordinator.snapshot``."""


class JsonPoolStore:
    """Snapshot file on disk; writes go through a temp file and rename."""

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        self.path = Path(path) if path else STATE_PATH

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a pool snapshot")
        return data

    def save(self, snapshot: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
        LOGGER.debug("Saved pool snapshot to %s", self.path)


__all__ = ["STATE_PATH", "PoolStore", "JsonPoolStore"]

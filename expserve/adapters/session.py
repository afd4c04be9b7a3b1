"""Session backed by the CLI's ``state.json``."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from expserve.ports.session import User

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"


class StateFileSession:
    """Reads ``{"auth": {"username": ...}}`` from *data_dir*/state.json."""

    def __init__(self, data_dir: Path) -> None:
        self._path = Path(data_dir) / STATE_FILENAME

    async def current_user(self) -> User | None:
        if not self._path.exists():
            return None
        try:
            state = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read session state %s: %s", self._path, e)
            return None
        username = ((state or {}).get("auth") or {}).get("username")
        return User(username=username) if username else None

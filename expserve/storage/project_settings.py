"""Project and user settings persisted as JSON files."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from expserve.core.urls import random_identifier_for_logged_out_user

logger = logging.getLogger(__name__)

SETTINGS_DIR = ".exponent"
SETTINGS_FILENAME = "settings.json"
PACKAGER_INFO_FILENAME = "packager-info.json"
USER_SETTINGS_FILENAME = "user-settings.json"

DEFAULT_SETTINGS: dict = {
    "hostType": "tunnel",
    "lanType": "ip",
    "dev": True,
    "strict": False,
    "minify": False,
    "urlType": "exp",
    "urlRandomness": None,
}

PLACEHOLDER_USERNAME_KEY = "loggedOutPlaceholderUsername"


def _read_json(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n")


class ProjectSettings:
    """``<root>/.exponent/*.json`` plus user-level settings in *data_dir*."""

    def __init__(self, data_dir: Path) -> None:
        self._user_path = Path(data_dir) / USER_SETTINGS_FILENAME

    @staticmethod
    def settings_path(root: str) -> Path:
        return Path(root) / SETTINGS_DIR / SETTINGS_FILENAME

    @staticmethod
    def packager_info_path(root: str) -> Path:
        return Path(root) / SETTINGS_DIR / PACKAGER_INFO_FILENAME

    async def read(self, root: str) -> dict:
        return {**DEFAULT_SETTINGS, **_read_json(self.settings_path(root))}

    async def write(self, root: str, partial: dict) -> dict:
        path = self.settings_path(root)
        merged = {**_read_json(path), **partial}
        _write_json(path, merged)
        return {**DEFAULT_SETTINGS, **merged}

    async def read_packager_info(self, root: str) -> dict:
        return _read_json(self.packager_info_path(root))

    async def write_packager_info(self, root: str, info: dict) -> dict:
        path = self.packager_info_path(root)
        merged = {**_read_json(path), **info}
        _write_json(path, merged)
        logger.debug("Saved packager info to %s", path)
        return merged

    async def read_or_create_placeholder_username(self) -> str:
        user_settings = _read_json(self._user_path)
        placeholder = user_settings.get(PLACEHOLDER_USERNAME_KEY)
        if not placeholder:
            placeholder = random_identifier_for_logged_out_user()
            user_settings[PLACEHOLDER_USERNAME_KEY] = placeholder
            _write_json(self._user_path, user_settings)
            logger.info("Created logged-out placeholder username %s", placeholder)
        return placeholder

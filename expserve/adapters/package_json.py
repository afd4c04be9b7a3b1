"""``package.json`` manifest source."""
from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_POINT = "index.js"
_PLATFORM_ENTRY_POINTS = ("index.ios.js", "index.android.js")


def _load_package_json(root: str) -> dict | None:
    path = Path(root) / "package.json"
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


class PackageJsonSource:
    """Reads the project's ``package.json`` on every call (it may be edited live)."""

    async def read_manifest(self, root: str) -> dict | None:
        return _load_package_json(root)

    async def determine_entry_point(self, root: str) -> str:
        """``exp.entryPoint``, then ``main``, then the first existing index file."""
        pkg = _load_package_json(root) or {}
        entry = (pkg.get("exp") or {}).get("entryPoint") or pkg.get("main")
        if entry:
            return entry
        for candidate in (DEFAULT_ENTRY_POINT, *_PLATFORM_ENTRY_POINTS):
            if (Path(root) / candidate).exists():
                return candidate
        return DEFAULT_ENTRY_POINT

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ManifestSource(Protocol):
    """Reads the project's declared manifest (``package.json``)."""

    async def read_manifest(self, root: str) -> dict | None:
        """Return the parsed manifest, or None when the project has none."""
        ...

    async def determine_entry_point(self, root: str) -> str:
        """Return the entry module path relative to *root*."""
        ...


@runtime_checkable
class SettingsStore(Protocol):
    """Per-project and per-user settings persistence."""

    async def read(self, root: str) -> dict:
        """Project settings merged over defaults (``hostType``, ``dev``, ``urlRandomness`` ...)."""
        ...

    async def write(self, root: str, partial: dict) -> dict:
        """Merge *partial* into the project settings and persist."""
        ...

    async def read_packager_info(self, root: str) -> dict:
        ...

    async def write_packager_info(self, root: str, info: dict) -> dict:
        """Merge running ports / tunnel URL into the packager info file."""
        ...

    async def read_or_create_placeholder_username(self) -> str:
        """Stable stand-in username for logged-out users."""
        ...

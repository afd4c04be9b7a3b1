from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ApiPort(Protocol):
    """Remote API calls the packager controller needs."""

    async def sign_manifest(self, args: dict, manifest: dict) -> str:
        """Return the signed, serialized form of *manifest*."""
        ...

    async def fetch_sdk_versions(self) -> dict | None:
        """Return ``{sdkVersion: {"exponent-react-native-tag": ...}}``, or None."""
        ...

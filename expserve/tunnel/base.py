"""Shared types for the tunnel layer."""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class TunnelClientProtocol(Protocol):
    """Connects a local port to a public hostname."""

    async def connect(
        self, *, hostname: str, auth_token: str, port: int, proto: str = "http",
    ) -> str:
        """Open the tunnel. Returns the public URL; raises TunnelError on failure."""
        ...

    async def disconnect(self, url: str) -> None:
        """Close the tunnel that was opened for *url*."""
        ...

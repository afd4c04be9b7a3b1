from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PortAllocator(Protocol):
    """Free TCP port allocation interface."""

    async def allocate_free_ports(self, count: int, range_start: int) -> list[int]:
        """Return *count* distinct free ports at or above *range_start*."""
        ...

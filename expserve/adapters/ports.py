"""Free port allocation by bind probing."""
from __future__ import annotations

import socket

MAX_PORT = 65535


def _is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("", port))
        except OSError:
            return False
        return True


class FreePortAllocator:
    async def allocate_free_ports(self, count: int, range_start: int) -> list[int]:
        """First *count* bindable ports scanning upward from *range_start*."""
        ports: list[int] = []
        port = range_start
        while len(ports) < count:
            if port > MAX_PORT:
                raise RuntimeError(f"No {count} free ports at or above {range_start}")
            if _is_free(port):
                ports.append(port)
            port += 1
        return ports

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class User:
    username: str


@runtime_checkable
class SessionPort(Protocol):
    """Current user session interface."""

    async def current_user(self) -> User | None:
        """Return the logged-in user, or None when logged out."""
        ...

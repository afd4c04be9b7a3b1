"""Single-slot cache of the last signed manifest."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ManifestCache:
    """Maps the current serialized manifest to its signed form.

    Capacity is one: a different manifest string always replaces the entry.
    Two concurrent misses for different strings both sign, and whichever
    finishes last owns the slot.
    """

    def __init__(self) -> None:
        self._manifest_string: str | None = None
        self._signed_manifest: str | None = None

    async def get_signed(
        self,
        manifest_string: str,
        sign: Callable[[], Awaitable[str]],
    ) -> str:
        """Return the signed form of *manifest_string*, calling *sign* on a miss."""
        if self._manifest_string == manifest_string and self._signed_manifest is not None:
            return self._signed_manifest

        logger.debug("Manifest changed, requesting a new signature")
        signed = await sign()
        self._manifest_string, self._signed_manifest = manifest_string, signed
        return signed

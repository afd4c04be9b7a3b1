from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from expserve.server.manifest_cache import ManifestCache


async def test_hit_does_not_sign_again():
    cache = ManifestCache()
    sign = AsyncMock(return_value="signed-a")

    assert await cache.get_signed('{"a":1}', sign) == "signed-a"
    assert await cache.get_signed('{"a":1}', sign) == "signed-a"
    sign.assert_awaited_once()


async def test_new_manifest_replaces_slot():
    cache = ManifestCache()
    await cache.get_signed("a", AsyncMock(return_value="signed-a"))
    await cache.get_signed("b", AsyncMock(return_value="signed-b"))

    sign = AsyncMock(return_value="signed-a2")
    assert await cache.get_signed("a", sign) == "signed-a2"
    sign.assert_awaited_once()


async def test_failed_sign_leaves_cache_untouched():
    cache = ManifestCache()
    await cache.get_signed("a", AsyncMock(return_value="signed-a"))

    failing = AsyncMock(side_effect=RuntimeError("offline"))
    try:
        await cache.get_signed("b", failing)
    except RuntimeError:
        pass

    sign = AsyncMock()
    assert await cache.get_signed("a", sign) == "signed-a"
    sign.assert_not_awaited()


async def test_concurrent_misses_last_writer_wins():
    cache = ManifestCache()
    release_a = asyncio.Event()

    async def slow_a():
        await release_a.wait()
        return "signed-a"

    async def fast_b():
        return "signed-b"

    task_a = asyncio.create_task(cache.get_signed("a", slow_a))
    await asyncio.sleep(0)
    assert await cache.get_signed("b", fast_b) == "signed-b"
    release_a.set()
    assert await task_a == "signed-a"

    # "a" finished last, so it owns the slot and "b" has to be signed again.
    sign_a = AsyncMock()
    assert await cache.get_signed("a", sign_a) == "signed-a"
    sign_a.assert_not_awaited()
    sign_b = AsyncMock(return_value="signed-b2")
    assert await cache.get_signed("b", sign_b) == "signed-b2"
    sign_b.assert_awaited_once()

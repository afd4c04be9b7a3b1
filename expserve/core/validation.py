"""Project manifest validation.

Checks run in the background and report through :class:`StderrEvent`;
nothing here ever fails a request or a startup.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from expserve.core.errors import ApiError
from expserve.core.events import EventBus, StderrEvent
from expserve.ports.api import ApiPort
from expserve.ports.project import ManifestSource

logger = logging.getLogger(__name__)

HELP_URL = "https://exponentjs.com/help"
FORK_MARKER = "exponentjs/react-native#"
TAG_KEY = "exponent-react-native-tag"


class ManifestValidator:
    """Validates ``package.json`` against the SDK version table."""

    def __init__(
        self,
        event_bus: EventBus,
        manifest_source: ManifestSource,
        api: ApiPort,
        root: str,
    ) -> None:
        self._bus = event_bus
        self._source = manifest_source
        self._api = api
        self._root = root
        self._tasks: set[asyncio.Task] = set()

    def schedule(self) -> asyncio.Task:
        """Run validate() as a detached task; the caller never awaits it."""
        task = asyncio.create_task(self.validate())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def validate(self) -> str | None:
        """Return the first problem found (also published), or None."""
        try:
            problem = await self._check()
        except Exception as e:
            logger.exception("Manifest validation crashed")
            problem = f"Error: Couldn't validate package.json: {e}"
        if problem:
            logger.warning("%s", problem)
            self._bus.publish(StderrEvent(text=problem))
        return problem

    async def _check(self) -> str | None:
        pkg = await self._source.read_manifest(self._root)
        if not pkg:
            return "Error: Can't find package.json"

        react_native = (pkg.get("dependencies") or {}).get("react-native")
        if not react_native:
            return "Error: Can't find react-native in package.json dependencies"

        if FORK_MARKER not in react_native:
            return f"Error: Must use Exponent fork of react-native. See {HELP_URL}"

        sdk_version = (pkg.get("exp") or {}).get("sdkVersion")
        if not sdk_version:
            return f"Error: Can't find key exp.sdkVersion in package.json. See {HELP_URL}"

        if sdk_version == "UNVERSIONED":
            return (
                "Warning: Using unversioned Exponent SDK. "
                "Do not publish until you set sdkVersion in package.json"
            )

        react_native_tag = react_native[react_native.rfind("#") + 1:]

        try:
            sdk_versions = await self._api.fetch_sdk_versions()
        except (ApiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("SDK version lookup failed: %s", e)
            sdk_versions = None
        if not sdk_versions:
            return "Error: Couldn't connect to server"

        if sdk_version not in sdk_versions:
            return (
                "Error: Invalid sdkVersion. Valid options are "
                + ", ".join(sdk_versions)
            )

        expected_tag = sdk_versions[sdk_version].get(TAG_KEY)
        if expected_tag != react_native_tag:
            return (
                f"Error: Invalid version of react-native for sdkVersion {sdk_version}. "
                f"Use github:exponentjs/react-native#{expected_tag}"
            )
        return None

"""Orchestrator: starts, restarts and stops the packager, tunnel and local server."""
from __future__ import annotations

import asyncio
import dataclasses
import logging

from expserve.core.events import EventBus
from expserve.core.options import PackagerOptions
from expserve.core.validation import ManifestValidator
from expserve.packager.process import DEFAULT_STOP_TIMEOUT, PackagerHandle, PackagerProcess
from expserve.ports.allocator import PortAllocator
from expserve.ports.api import ApiPort
from expserve.ports.project import ManifestSource, SettingsStore
from expserve.ports.session import SessionPort
from expserve.server.local_server import LocalServer
from expserve.server.manifest_cache import ManifestCache
from expserve.tunnel.base import TunnelClientProtocol
from expserve.tunnel.manager import TunnelManager

logger = logging.getLogger(__name__)

PORT_RANGE_START = 19000


class Orchestrator:
    """Owns one packager, one tunnel and one local server for a project.

    Resources start concurrently: the local server only needs the packager's
    port number, not a ready packager, and a failed tunnel is not fatal.
    """

    def __init__(
        self,
        options: PackagerOptions,
        *,
        event_bus: EventBus,
        manifest_source: ManifestSource,
        session: SessionPort,
        settings: SettingsStore,
        api: ApiPort,
        port_allocator: PortAllocator,
        tunnel_client: TunnelClientProtocol,
        tunnel_domain: str,
        tunnel_auth_token: str = "",
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        host: str = "0.0.0.0",
    ) -> None:
        self._options = options
        self._bus = event_bus
        self._source = manifest_source
        self._settings = settings
        self._allocator = port_allocator

        self._validator = ManifestValidator(event_bus, manifest_source, api, options.absolute_path)
        self._packager = PackagerProcess(event_bus, stop_timeout=stop_timeout)
        self._tunnel = TunnelManager(
            event_bus, tunnel_client, settings, session,
            domain=tunnel_domain, auth_token=tunnel_auth_token,
        )
        self._cache = ManifestCache()
        self._server = LocalServer(
            manifest_source, session, settings, api, self._cache, self._validator,
            tunnel_url=self._tunnel.get_url,
            host=host,
        )

    @property
    def options(self) -> PackagerOptions:
        return self._options

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def packager(self) -> PackagerProcess:
        return self._packager

    @property
    def tunnel(self) -> TunnelManager:
        return self._tunnel

    @property
    def server(self) -> LocalServer:
        return self._server

    @property
    def tunnel_url(self) -> str | None:
        return self._tunnel.get_url()

    @property
    def project_short_name(self) -> str:
        return self._options.project_short_name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> Orchestrator:
        """Resolve options, start all three resources, persist packager info."""
        self._validator.schedule()
        await self._resolve_options()
        PackagerProcess.check_preconditions(self._options)

        results = await asyncio.gather(
            self.start_or_restart_local_server(),
            self.start_or_restart_packager(),
            self.start_or_restart_tunnel(),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error("Startup failed, stopping started resources: %s", failures[0])
            await self.stop()
            raise failures[0]

        await self._settings.write_packager_info(self._options.absolute_path, {
            "port": self._options.port,
            "packagerPort": self._options.packager_port,
            "tunnelUrl": self.tunnel_url,
        })
        logger.info(
            "Project %s ready (server %d, packager %d, tunnel %s)",
            self.project_short_name, self._options.port,
            self._options.packager_port, self.tunnel_url,
        )
        return self

    async def stop(self) -> list:
        """Stop everything. Sub-failures are logged and returned, never raised."""
        results = await asyncio.gather(
            self._packager.stop(),
            self._tunnel.stop(),
            self._server.stop(),
            return_exceptions=True,
        )
        for name, result in zip(("packager", "tunnel", "local server"), results):
            if isinstance(result, BaseException):
                logger.warning("Failed to stop %s: %s", name, result)
        return list(results)

    async def start_or_restart_packager(self, reset_cache: bool = False) -> PackagerHandle:
        return await self._packager.start(self._options, reset_cache=reset_cache)

    async def start_or_restart_tunnel(self) -> str | None:
        await self._tunnel.start(self._options)
        return self.tunnel_url

    async def start_or_restart_local_server(self) -> None:
        await self._server.start(self._options)

    # ------------------------------------------------------------------

    async def _resolve_options(self) -> None:
        options = self._options
        if not options.entry_point:
            logger.info("Determining entry point automatically...")
            entry_point = await self._source.determine_entry_point(options.absolute_path)
            logger.info("Entry point: %s", entry_point)
            options = dataclasses.replace(options, entry_point=entry_point)

        if not options.port or not options.packager_port:
            port, packager_port = await self._allocator.allocate_free_ports(2, PORT_RANGE_START)
            options = dataclasses.replace(options, port=port, packager_port=packager_port)

        self._options = options

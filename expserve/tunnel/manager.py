"""Tunnel lifecycle: publishes the local server under a stable public hostname."""
from __future__ import annotations

import logging

from expserve.core.events import (
    EventBus,
    TunnelDidStartEvent,
    TunnelDisconnectedEvent,
    TunnelDisconnectErrorEvent,
    TunnelReadyEvent,
    TunnelWillDisconnectEvent,
    TunnelWillStartEvent,
)
from expserve.core.options import PackagerOptions
from expserve.core.urls import http_url, some_randomness, tunnel_hostname
from expserve.ports.project import SettingsStore
from expserve.ports.session import SessionPort
from expserve.tunnel.base import TunnelClientProtocol

logger = logging.getLogger(__name__)


class TunnelManager:
    """Owns at most one connected tunnel.

    A failed connect is not fatal: the URL stays None and the rest of the
    system serves over LAN. A failed disconnect keeps the URL, since the
    tunnel may well still be up.
    """

    def __init__(
        self,
        event_bus: EventBus,
        client: TunnelClientProtocol,
        settings: SettingsStore,
        session: SessionPort,
        domain: str,
        auth_token: str = "",
    ) -> None:
        self._bus = event_bus
        self._client = client
        self._settings = settings
        self._session = session
        self._domain = domain
        self._auth_token = auth_token
        self._url: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._url is not None

    def get_url(self) -> str | None:
        return http_url(self._url)

    async def hostname_for(self, options: PackagerOptions) -> str:
        """Derive the public hostname for *options*' project.

        Reads are sequential on purpose: the randomness and the placeholder
        username may both write settings files.
        """
        user = await self._session.current_user()
        username = user.username if user else None
        if not username:
            username = await self._settings.read_or_create_placeholder_username()
        randomness = await self._randomness(options.absolute_path)
        return tunnel_hostname(randomness, username, options.project_short_name, self._domain)

    async def start(self, options: PackagerOptions) -> str | None:
        """(Re)connect the tunnel to the local server port."""
        if self._url:
            logger.info("Waiting for ngrok to disconnect...")
            await self.stop()
            logger.info("Disconnected ngrok; restarting...")

        port = options.port
        self._bus.publish(TunnelWillStartEvent(port=port))

        hostname = await self.hostname_for(options)
        try:
            self._url = await self._client.connect(
                hostname=hostname,
                auth_token=self._auth_token,
                port=port,
                proto="http",
            )
        except Exception as e:
            logger.error("Problem with ngrok: %s", e)

        self._bus.publish(TunnelDidStartEvent(port=port, url=self._url))
        self._bus.publish(TunnelReadyEvent(port=port, url=self._url))
        logger.info("Connected ngrok to port %s via %s", port, self._url)
        return self._url

    async def stop(self) -> None:
        if not self._url:
            return
        url = self._url
        self._bus.publish(TunnelWillDisconnectEvent(url=url))
        try:
            await self._client.disconnect(url)
        except Exception as e:
            logger.error("Problem disconnecting ngrok: %s", e)
            self._bus.publish(TunnelDisconnectErrorEvent(url=url, error=str(e)))
            return
        self._url = None
        self._bus.publish(TunnelDisconnectedEvent(url=url))

    async def _randomness(self, root: str) -> str:
        settings = await self._settings.read(root)
        randomness = settings.get("urlRandomness")
        if not randomness:
            randomness = some_randomness()
            await self._settings.write(root, {"urlRandomness": randomness})
        return randomness

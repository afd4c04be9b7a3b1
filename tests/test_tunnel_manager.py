"""Tests for TunnelManager connect/disconnect semantics."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from expserve.core import subprocess_tracker
from expserve.core.errors import TunnelError
from expserve.core.events import (
    EventBus,
    TunnelDidStartEvent,
    TunnelDisconnectedEvent,
    TunnelDisconnectErrorEvent,
    TunnelReadyEvent,
    TunnelWillDisconnectEvent,
    TunnelWillStartEvent,
)
from expserve.ports.session import User
from expserve.storage.project_settings import ProjectSettings
from expserve.tunnel.base import TunnelClientProtocol
from expserve.tunnel.manager import TunnelManager
from expserve.tunnel.ngrok import NgrokTunnelClient, parse_tunnel_url

URL = "https://ab-cde.alice.myapp.exp.direct"


def _client(url: str = URL) -> MagicMock:
    client = MagicMock()
    client.connect = AsyncMock(return_value=url)
    client.disconnect = AsyncMock()
    return client


def _manager(data_dir: Path, client, user: User | None = User("Alice")):
    bus = EventBus()
    session = MagicMock()
    session.current_user = AsyncMock(return_value=user)
    settings = ProjectSettings(data_dir)
    manager = TunnelManager(bus, client, settings, session, domain="exp.direct", auth_token="tok")
    return bus, settings, manager


class TestConnect:
    async def test_connect_with_derived_hostname(self, data_dir, packager_options):
        client = _client()
        _, settings, manager = _manager(data_dir, client)
        await settings.write(packager_options.absolute_path, {"urlRandomness": "ab-cde"})

        url = await manager.start(packager_options)

        client.connect.assert_awaited_once_with(
            hostname="ab-cde.alice.myapp.exp.direct",
            auth_token="tok",
            port=19000,
            proto="http",
        )
        assert url == URL
        assert manager.is_connected

    async def test_get_url_rewrites_https(self, data_dir, packager_options):
        _, _, manager = _manager(data_dir, _client("https://x.example.com"))
        await manager.start(packager_options)
        assert manager.get_url() == "http://x.example.com"

    async def test_get_url_none_before_start(self, data_dir):
        _, _, manager = _manager(data_dir, _client())
        assert manager.get_url() is None

    async def test_randomness_generated_and_persisted(self, data_dir, packager_options):
        _, settings, manager = _manager(data_dir, _client())

        first = await manager.hostname_for(packager_options)
        stored = (await settings.read(packager_options.absolute_path))["urlRandomness"]
        second = await manager.hostname_for(packager_options)

        assert stored
        assert first.startswith(stored + ".")
        assert first == second

    async def test_logged_out_uses_placeholder(self, data_dir, packager_options):
        _, settings, manager = _manager(data_dir, _client(), user=None)

        hostname = await manager.hostname_for(packager_options)
        placeholder = await settings.read_or_create_placeholder_username()

        assert hostname.split(".")[1] == placeholder

    async def test_events_published(self, data_dir, packager_options):
        bus, _, manager = _manager(data_dir, _client())
        will_start = bus.subscribe(TunnelWillStartEvent)
        did_start = bus.subscribe(TunnelDidStartEvent)
        ready = bus.subscribe(TunnelReadyEvent)

        await manager.start(packager_options)

        assert will_start.get_nowait().port == 19000
        assert did_start.get_nowait() == TunnelDidStartEvent(port=19000, url=URL)
        assert ready.get_nowait() == TunnelReadyEvent(port=19000, url=URL)

    async def test_connect_failure_is_absorbed(self, data_dir, packager_options):
        client = _client()
        client.connect.side_effect = TunnelError("auth failed")
        bus, _, manager = _manager(data_dir, client)
        did_start = bus.subscribe(TunnelDidStartEvent)
        ready = bus.subscribe(TunnelReadyEvent)

        url = await manager.start(packager_options)

        assert url is None
        assert manager.get_url() is None
        assert did_start.get_nowait().url is None
        assert ready.get_nowait().url is None

    async def test_restart_disconnects_first(self, data_dir, packager_options):
        client = _client()
        _, _, manager = _manager(data_dir, client)

        await manager.start(packager_options)
        await manager.start(packager_options)

        client.disconnect.assert_awaited_once_with(URL)
        assert client.connect.await_count == 2


class TestDisconnect:
    async def test_stop_noop_when_not_connected(self, data_dir):
        client = _client()
        bus, _, manager = _manager(data_dir, client)
        will_disconnect = bus.subscribe(TunnelWillDisconnectEvent)

        await manager.stop()

        client.disconnect.assert_not_awaited()
        assert will_disconnect.empty()

    async def test_stop_clears_url(self, data_dir, packager_options):
        client = _client()
        bus, _, manager = _manager(data_dir, client)
        will_disconnect = bus.subscribe(TunnelWillDisconnectEvent)
        disconnected = bus.subscribe(TunnelDisconnectedEvent)
        await manager.start(packager_options)

        await manager.stop()

        assert manager.get_url() is None
        assert will_disconnect.get_nowait().url == URL
        assert disconnected.get_nowait().url == URL

    async def test_disconnect_failure_keeps_url(self, data_dir, packager_options):
        client = _client()
        client.disconnect.side_effect = TunnelError("agent gone")
        bus, _, manager = _manager(data_dir, client)
        errors = bus.subscribe(TunnelDisconnectErrorEvent)
        disconnected = bus.subscribe(TunnelDisconnectedEvent)
        await manager.start(packager_options)

        await manager.stop()

        assert manager.get_url() == "http://ab-cde.alice.myapp.exp.direct"
        assert errors.get_nowait() == TunnelDisconnectErrorEvent(url=URL, error="agent gone")
        assert disconnected.empty()


class TestNgrokClient:
    def test_satisfies_protocol(self):
        assert isinstance(NgrokTunnelClient(), TunnelClientProtocol)

    async def test_missing_binary_raises(self, monkeypatch):
        monkeypatch.setattr("expserve.tunnel.ngrok.shutil.which", lambda _name: None)
        client = NgrokTunnelClient()
        with pytest.raises(TunnelError, match="ngrok not found"):
            await client.connect(hostname="h.exp.direct", auth_token="", port=19000)

    async def test_disconnect_unknown_url_raises(self):
        with pytest.raises(TunnelError, match="No ngrok agent"):
            await NgrokTunnelClient().disconnect("https://nope.exp.direct")

    async def test_connect_reads_url_from_agent_log(self, tmp_path: Path):
        agent = tmp_path / "ngrok"
        agent.write_text(
            f"#!{sys.executable}\n"
            "import json, sys, time\n"
            "print('not json', flush=True)\n"
            "host = sys.argv[sys.argv.index('--domain') + 1]\n"
            "print(json.dumps({'msg': 'started tunnel', 'url': 'https://' + host}), flush=True)\n"
            "while True:\n"
            "    time.sleep(0.1)\n"
        )
        agent.chmod(0o755)
        client = NgrokTunnelClient(ngrok_path=str(agent), connect_timeout=10)

        url = await client.connect(hostname="h.exp.direct", auth_token="tok", port=19000)
        assert url == "https://h.exp.direct"
        await client.disconnect(url)

        with pytest.raises(TunnelError):
            await client.disconnect(url)

    async def test_agent_exiting_on_its_own_is_untracked(self, tmp_path: Path):
        agent = tmp_path / "ngrok"
        agent.write_text(
            f"#!{sys.executable}\n"
            "import json, sys, time\n"
            "host = sys.argv[sys.argv.index('--domain') + 1]\n"
            "print(json.dumps({'msg': 'started tunnel', 'url': 'https://' + host}), flush=True)\n"
            "time.sleep(0.2)\n"
            "sys.exit(1)\n"
        )
        agent.chmod(0o755)
        client = NgrokTunnelClient(ngrok_path=str(agent), connect_timeout=10)

        url = await client.connect(hostname="h.exp.direct", auth_token="", port=19000)
        pid = client._agents[url].pid
        assert pid in subprocess_tracker.tracked_pids()

        await asyncio.wait_for(client._drains[url], timeout=10)

        assert pid not in subprocess_tracker.tracked_pids()
        await client.disconnect(url)

    async def test_agent_exit_before_url_raises(self, tmp_path: Path):
        agent = tmp_path / "ngrok"
        agent.write_text(f"#!{sys.executable}\nimport sys\nsys.exit(3)\n")
        agent.chmod(0o755)
        client = NgrokTunnelClient(ngrok_path=str(agent), connect_timeout=10)

        with pytest.raises(TunnelError):
            await client.connect(hostname="h.exp.direct", auth_token="", port=19000)


class TestParseTunnelUrl:
    def test_started_tunnel_line(self):
        line = '{"lvl":"info","msg":"started tunnel","url":"https://a.exp.direct"}'
        assert parse_tunnel_url(line) == "https://a.exp.direct"

    def test_other_records_ignored(self):
        assert parse_tunnel_url('{"lvl":"info","msg":"client session established"}') is None

    def test_non_json_ignored(self):
        assert parse_tunnel_url("t=2024 lvl=info msg=starting") is None
        assert parse_tunnel_url("[1, 2]") is None

"""ngrok agent tunnel client.

Runs ``ngrok http PORT --domain HOST`` with JSON logging on stdout and
reads the public URL from the ``started tunnel`` log record.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shutil

from expserve.core import subprocess_tracker
from expserve.core.errors import TunnelError

logger = logging.getLogger(__name__)


def parse_tunnel_url(line: str) -> str | None:
    """Return the public URL from one ngrok JSON log line, if it has one."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None
    if record.get("msg") == "started tunnel" and record.get("url"):
        return record["url"]
    return None


class NgrokTunnelClient:
    """One ngrok agent subprocess per connected URL."""

    def __init__(self, ngrok_path: str | None = None, connect_timeout: float = 30.0) -> None:
        self._ngrok_path = ngrok_path
        self._connect_timeout = connect_timeout
        self._agents: dict[str, asyncio.subprocess.Process] = {}
        self._drains: dict[str, asyncio.Task] = {}

    async def connect(
        self, *, hostname: str, auth_token: str, port: int, proto: str = "http",
    ) -> str:
        ngrok_path = self._ngrok_path or shutil.which("ngrok")
        if not ngrok_path:
            raise TunnelError("ngrok not found in PATH. Install: brew install ngrok")

        cmd = [
            ngrok_path, proto, str(port),
            "--domain", hostname,
            "--log", "stdout",
            "--log-format", "json",
        ]
        if auth_token:
            cmd += ["--authtoken", auth_token]

        logger.info("Starting ngrok for port %d as %s", port, hostname)
        agent = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        subprocess_tracker.track(agent.pid, "ngrok")

        try:
            url = await self._wait_for_tunnel_url(agent)
        except Exception:
            await self._terminate(agent)
            raise
        self._agents[url] = agent
        # Keep reading so a chatty agent never blocks on a full pipe.
        self._drains[url] = asyncio.create_task(self._drain(agent))
        return url

    async def disconnect(self, url: str) -> None:
        agent = self._agents.pop(url, None)
        if agent is None:
            raise TunnelError(f"No ngrok agent is serving {url}")
        drain = self._drains.pop(url, None)
        if drain:
            drain.cancel()
        await self._terminate(agent)

    # ------------------------------------------------------------------

    async def _wait_for_tunnel_url(self, agent: asyncio.subprocess.Process) -> str:
        """Read agent log lines until the tunnel URL appears."""
        if not agent.stdout:
            raise TunnelError("ngrok process has no stdout")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._connect_timeout
        while loop.time() < deadline:
            remaining = deadline - loop.time()
            try:
                line = await asyncio.wait_for(
                    agent.stdout.readline(), timeout=min(remaining, 2.0),
                )
            except asyncio.TimeoutError:
                continue

            if not line:
                break

            text = line.decode("utf-8", errors="replace").strip()
            logger.debug("ngrok: %s", text)

            url = parse_tunnel_url(text)
            if url:
                logger.info("Tunnel URL: %s", url)
                return url

        if agent.returncode is not None:
            raise TunnelError(f"ngrok exited with code {agent.returncode}")
        raise TunnelError("Timed out waiting for ngrok tunnel URL")

    @staticmethod
    async def _drain(agent: asyncio.subprocess.Process) -> None:
        if not agent.stdout:
            return
        while True:
            line = await agent.stdout.readline()
            if not line:
                break
            logger.debug("ngrok: %s", line.decode("utf-8", errors="replace").strip())
        code = await agent.wait()
        subprocess_tracker.untrack(agent.pid)
        logger.warning("ngrok (PID %d) exited with code %s", agent.pid, code)

    @staticmethod
    async def _terminate(agent: asyncio.subprocess.Process) -> None:
        if agent.returncode is None:
            try:
                agent.terminate()
                await asyncio.wait_for(agent.wait(), timeout=5)
            except (asyncio.TimeoutError, ProcessLookupError):
                try:
                    agent.kill()
                except ProcessLookupError:
                    pass
            logger.info("Stopped ngrok process")
        subprocess_tracker.untrack(agent.pid)

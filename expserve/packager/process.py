"""Packager process: spawns and supervises the react-native bundler.

The bundler runs as ``node cli.js start --port N --projectRoots ROOT
--assetRoots ROOT``. Its stdout/stderr lines are published on the event
bus; a stdout line containing the ready marker publishes
:class:`PackagerReadyEvent`. Readiness detection is a text match on the
bundler's log output, not a protocol, and may miss a reworded banner.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path

from expserve.core import subprocess_tracker
from expserve.core.errors import ConfigurationError, PackagerStopTimeout
from expserve.core.events import (
    EventBus,
    PackagerReadyEvent,
    PackagerStoppedEvent,
    PackagerWillStopEvent,
    StderrEvent,
    StdoutEvent,
)
from expserve.core.options import PackagerOptions

logger = logging.getLogger(__name__)

_READY_RE = re.compile(r"React packager ready\.")

DEFAULT_STOP_TIMEOUT = 10.0


class PackagerHandle:
    """One spawned packager process.

    ``killed`` flips once SIGTERM has been sent and never flips back.
    ``exited`` flips exactly once, when the exit watcher sees the process end.
    """

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        self.killed = False
        self.exit_code: int | None = None
        self._exited = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def is_alive(self) -> bool:
        return not self.exited and not self.killed

    def terminate(self) -> None:
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass
        self.killed = True

    async def wait(self) -> int | None:
        """Wait for the exit watcher and return the exit code."""
        await self._exited.wait()
        return self.exit_code

    def _mark_exited(self, code: int | None) -> None:
        self.exit_code = code
        self._exited.set()


class PackagerProcess:
    """Owns at most one live packager process at a time."""

    def __init__(
        self,
        event_bus: EventBus,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ) -> None:
        self._bus = event_bus
        self._stop_timeout = stop_timeout
        self._handle: PackagerHandle | None = None

    @property
    def handle(self) -> PackagerHandle | None:
        return self._handle

    @property
    def is_alive(self) -> bool:
        return self._handle is not None and self._handle.is_alive

    @staticmethod
    def build_args(options: PackagerOptions, reset_cache: bool = False) -> list[str]:
        """CLI arguments for ``cli.js``."""
        root = options.absolute_path
        args = [
            "start",
            "--port", str(options.packager_port),
            "--projectRoots", root,
            "--assetRoots", root,
        ]
        if reset_cache:
            args.append("--reset-cache")
        return args

    @staticmethod
    def check_preconditions(options: PackagerOptions) -> tuple[str, str]:
        """Return ``(launcher, cli_path)`` or raise ConfigurationError."""
        if not options.packager_port:
            raise ConfigurationError("packager_port must be set before starting the packager")
        if not options.absolute_path:
            raise ConfigurationError("absolute_path must be set to start the packager")

        cli_path = options.resolved_cli_path
        if not Path(cli_path).is_file():
            raise ConfigurationError(f"Packager CLI not found: {cli_path}")
        return options.resolve_launcher(), cli_path

    async def start(self, options: PackagerOptions, reset_cache: bool = False) -> PackagerHandle:
        """Stop any running packager, then spawn a new one."""
        launcher, cli_path = self.check_preconditions(options)

        await self.stop()

        cmd = [launcher, cli_path, *self.build_args(options, reset_cache)]
        logger.info("Starting packager: %s (cwd=%s)", " ".join(cmd), options.working_directory)

        env = {k: v for k, v in os.environ.items() if k != "NODE_PATH"}
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=options.working_directory,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        subprocess_tracker.track(process.pid, "packager")

        handle = PackagerHandle(process)
        handle._tasks = [
            asyncio.create_task(self._pump_stdout(handle)),
            asyncio.create_task(self._pump_stderr(handle)),
            asyncio.create_task(self._watch_exit(handle)),
        ]
        self._handle = handle
        return handle

    async def stop(self) -> int | None:
        """Send SIGTERM and wait for the exit code.

        Returns None if nothing is running. Raises PackagerStopTimeout when
        the process outlives the stop window; it is not force-killed.
        """
        handle = self._handle
        if handle is None or handle.exited or handle.killed:
            logger.info("Packager already stopped.")
            return None

        logger.info("Stopping packager...")
        self._bus.publish(PackagerWillStopEvent(pid=handle.pid))
        handle.terminate()
        try:
            return await asyncio.wait_for(handle.wait(), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.error("Stopping packager timed out!")
            raise PackagerStopTimeout(
                f"Packager (PID {handle.pid}) did not exit within {self._stop_timeout}s"
            ) from None

    # ------------------------------------------------------------------

    async def _pump_stdout(self, handle: PackagerHandle) -> None:
        stream = handle.process.stdout
        if not stream:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            logger.debug("packager(out): %s", text)
            self._bus.publish(StdoutEvent(text=text))
            if _READY_RE.search(text):
                logger.info("Packager ready (PID %d)", handle.pid)
                self._bus.publish(PackagerReadyEvent(pid=handle.pid))

    async def _pump_stderr(self, handle: PackagerHandle) -> None:
        stream = handle.process.stderr
        if not stream:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            logger.debug("packager(err): %s", text)
            self._bus.publish(StderrEvent(text=text))

    async def _watch_exit(self, handle: PackagerHandle) -> None:
        code = await handle.process.wait()
        subprocess_tracker.untrack(handle.pid)
        logger.info("Packager process exited with code %s", code)
        handle._mark_exited(code)
        self._bus.publish(PackagerStoppedEvent(pid=handle.pid, exit_code=code))

from __future__ import annotations

import asyncio
import logging
import signal

from expserve.adapters.api_client import ApiClient
from expserve.adapters.package_json import PackageJsonSource
from expserve.adapters.ports import FreePortAllocator
from expserve.adapters.session import StateFileSession
from expserve.config import Config
from expserve.core.events import (
    ALL_EVENT_TYPES,
    EventBus,
    PackagerStoppedEvent,
    StderrEvent,
    StdoutEvent,
)
from expserve.core.orchestrator import Orchestrator
from expserve.storage.project_settings import ProjectSettings
from expserve.tunnel.ngrok import NgrokTunnelClient

LOG_FILE = "/tmp/expserve.log"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(LOG_FILE),
    ],
)
logger = logging.getLogger("expserve")


async def render_events(event_bus: EventBus) -> None:
    """Log every lifecycle event under its wire name."""
    queue = event_bus.subscribe_many(ALL_EVENT_TYPES)
    while True:
        event = await queue.get()
        if isinstance(event, StdoutEvent):
            logger.info("[packager] %s", event.text)
        elif isinstance(event, StderrEvent):
            logger.warning("[packager] %s", event.text)
        elif isinstance(event, PackagerStoppedEvent):
            logger.info("%s (exit code %s)", event.name, event.exit_code)
        else:
            logger.info("%s", event.name)


async def main() -> None:
    logger.info("expserve starting...")

    config = Config.from_env()
    event_bus = EventBus()

    orchestrator = Orchestrator(
        config.packager_options(),
        event_bus=event_bus,
        manifest_source=PackageJsonSource(),
        session=StateFileSession(config.data_dir),
        settings=ProjectSettings(config.data_dir),
        api=ApiClient(config.api_base_url),
        port_allocator=FreePortAllocator(),
        tunnel_client=NgrokTunnelClient(),
        tunnel_domain=config.ngrok_domain,
        tunnel_auth_token=config.ngrok_auth_token,
    )
    renderer = asyncio.create_task(render_events(event_bus))

    stop_event = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await orchestrator.start()
    logger.info(
        "Serving %s at http://localhost:%d (tunnel: %s). Press Ctrl+C to stop.",
        orchestrator.project_short_name,
        orchestrator.options.port,
        orchestrator.tunnel_url or "none",
    )

    await stop_event.wait()

    logger.info("Shutting down...")
    await orchestrator.stop()
    renderer.cancel()
    logger.info("expserve stopped.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

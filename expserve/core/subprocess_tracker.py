"""Process-exit hook for supervised children.

The packager and the ngrok agent are long-running children of the daemon.
Each one is tracked here while it is alive; an ``atexit`` handler sends
SIGTERM to every tracked PID when the daemon exits, normally or through an
unhandled exception, so no bundler is left orphaned on its port.
"""
from __future__ import annotations

import atexit
import logging
import os
import signal

logger = logging.getLogger(__name__)

_tracked: dict[int, str] = {}


def track(pid: int, label: str = "child") -> None:
    """Register a long-running subprocess PID."""
    _tracked[pid] = label
    logger.debug("Tracking %s PID %d", label, pid)


def untrack(pid: int) -> None:
    """Unregister a subprocess PID (it exited or was stopped)."""
    _tracked.pop(pid, None)


def tracked_pids() -> list[int]:
    return list(_tracked)


def kill_all() -> None:
    """Send SIGTERM to all tracked PIDs (called by atexit)."""
    for pid, label in list(_tracked.items()):
        try:
            os.kill(pid, signal.SIGTERM)
            logger.debug("Sent SIGTERM to %s PID %d", label, pid)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug("Failed to signal %s PID %d: %s", label, pid, e)
    _tracked.clear()


# SIGKILL of the daemon itself cannot be caught; everything else is.
atexit.register(kill_all)

"""Exception types raised by the orchestration core."""
from __future__ import annotations


class ExpServeError(Exception):
    """Base class for expserve errors."""


class ConfigurationError(ExpServeError, ValueError):
    """Required options are missing or point at nothing.

    Raised before any process, socket or tunnel is touched.
    """


class PackagerStopTimeout(ExpServeError, TimeoutError):
    """The packager did not exit within the graceful-stop window."""


class TunnelError(ExpServeError, RuntimeError):
    """The tunnel agent could not connect or disconnect."""


class ApiError(ExpServeError, RuntimeError):
    """The remote API answered with an error payload or a bad status."""

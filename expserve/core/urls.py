"""URL and hostname helpers shared by the tunnel and the local server."""
from __future__ import annotations

import logging
import random
import re
import socket
import string
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_IDENTIFIER_ALPHABET = string.ascii_lowercase + string.digits
_NON_DOMAIN_CHARS = re.compile(r"[^a-z0-9-]+")
_HTTPS_PREFIX = re.compile(r"^https")


# ---------------------------------------------------------------------------
# Identifiers and hostnames
# ---------------------------------------------------------------------------

def random_identifier(length: int = 6) -> str:
    return "".join(random.choice(_IDENTIFIER_ALPHABET) for _ in range(length))


def some_randomness() -> str:
    """Per-project hostname nonce, e.g. ``ab-x7q``."""
    return f"{random_identifier(2)}-{random_identifier(3)}"


def random_identifier_for_logged_out_user() -> str:
    return f"anon-{random_identifier(5)}"


def domainify(value: str) -> str:
    """Lowercase *value* and squash anything outside ``[a-z0-9-]`` to ``-``."""
    cleaned = _NON_DOMAIN_CHARS.sub("-", value.lower()).strip("-")
    return cleaned or "x"


def tunnel_hostname(randomness: str, username: str, project_name: str, domain: str) -> str:
    """Public tunnel hostname for one project of one user."""
    return ".".join([randomness, domainify(username), domainify(project_name), domain])


def http_url(url: str | None) -> str | None:
    """Rewrite an ``https`` tunnel URL to ``http`` (no TLS certificates are set up)."""
    if not url:
        return url
    return _HTTPS_PREFIX.sub("http", url, count=1)


# ---------------------------------------------------------------------------
# Bundle paths
# ---------------------------------------------------------------------------

def guess_main_module_path(entry_point: str) -> str:
    """Module path the packager serves, relative to the project root."""
    path = entry_point.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def packager_path(entry_point: str, extension: str, query_string: str, platform: str) -> str:
    """Rewrite target for ``/bundle`` and ``/map`` requests.

    >>> packager_path("src/App.js", "bundle", "foo=1", "android")
    '/src/App.js.bundle?foo=1&platform=android'
    """
    path = f"/{guess_main_module_path(entry_point)}.{extension}?"
    if query_string:
        path += query_string + "&"
    return path + f"platform={platform}"


def bundle_query_params(packager_opts: dict) -> str:
    dev = "true" if packager_opts.get("dev") else "false"
    minify = "true" if packager_opts.get("minify") else "false"
    return f"dev={dev}&minify={minify}"


# ---------------------------------------------------------------------------
# Manifest URLs
# ---------------------------------------------------------------------------

def lan_address() -> str:
    """Best-effort LAN IPv4 address of this machine."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            # No packet is sent; connect() only selects the outbound interface.
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"


def url_host(packager_opts: dict, port: int | None, tunnel_url: str | None) -> str:
    """``host[:port]`` the phone should use, per the project's ``hostType``."""
    host_type = packager_opts.get("hostType", "tunnel")
    if host_type == "tunnel" and tunnel_url:
        parsed = urlparse(tunnel_url)
        return parsed.netloc or parsed.path
    if host_type == "tunnel":
        logger.debug("No tunnel URL yet, falling back to LAN address")
    host = "localhost" if host_type == "localhost" else lan_address()
    return f"{host}:{port}" if port else host


def construct_url(
    packager_opts: dict,
    *,
    port: int | None,
    tunnel_url: str | None,
    http: bool = False,
    with_protocol: bool = True,
) -> str:
    host = url_host(packager_opts, port, tunnel_url)
    if not with_protocol:
        return host
    protocol = "http" if http else packager_opts.get("urlType", "exp")
    return f"{protocol}://{host}"


def construct_bundle_url(packager_opts: dict, *, port: int | None, tunnel_url: str | None) -> str:
    return construct_url(packager_opts, port=port, tunnel_url=tunnel_url, http=True) + "/bundle"


def construct_debugger_host(packager_opts: dict, *, port: int | None, tunnel_url: str | None) -> str:
    return construct_url(packager_opts, port=port, tunnel_url=tunnel_url, with_protocol=False)

"""Local HTTP front door: manifest endpoint plus a proxy to the packager.

Routing, by precedence:

* ``/bundle`` and ``/map`` are rewritten to the entry module's ``.bundle`` /
  ``.map`` on the packager, with the platform taken from the
  ``Exponent-Platform`` header (default ``ios``).
* ``GET /``, ``GET /manifest`` and ``GET /index.exp`` serve the manifest.
* Everything else is forwarded to the packager untouched.

Manifest failures answer status 520 with ``{"error": message}`` so they can
be told apart from 5xx responses relayed from the packager.
"""
from __future__ import annotations

import json
import logging
from typing import Callable

import aiohttp
from aiohttp import web

from expserve.core.errors import ConfigurationError
from expserve.core.options import PackagerOptions
from expserve.core.urls import (
    bundle_query_params,
    construct_bundle_url,
    construct_debugger_host,
    guess_main_module_path,
    packager_path,
)
from expserve.core.validation import ManifestValidator
from expserve.ports.api import ApiPort
from expserve.ports.project import ManifestSource, SettingsStore
from expserve.ports.session import SessionPort, User
from expserve.server.manifest_cache import ManifestCache

logger = logging.getLogger(__name__)

MANIFEST_PATHS = ("/", "/manifest", "/index.exp")
MANIFEST_ERROR_STATUS = 520
PLATFORM_HEADER = "Exponent-Platform"
ACCEPT_SIGNATURE_HEADER = "Exponent-Accept-Signature"
DEFAULT_PLATFORM = "ios"

_HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
})
_CHUNK_SIZE = 64 * 1024


def _forward_headers(headers, skip: frozenset = frozenset()) -> dict[str, str]:
    return {
        k: v for k, v in headers.items()
        if k.lower() not in _HOP_BY_HOP and k.lower() not in skip
    }


class LocalServer:
    """aiohttp server in front of the packager."""

    def __init__(
        self,
        manifest_source: ManifestSource,
        session: SessionPort,
        settings: SettingsStore,
        api: ApiPort,
        cache: ManifestCache,
        validator: ManifestValidator,
        tunnel_url: Callable[[], str | None],
        host: str = "0.0.0.0",
    ) -> None:
        self._source = manifest_source
        self._session = session
        self._settings = settings
        self._api = api
        self._cache = cache
        self._validator = validator
        self._tunnel_url = tunnel_url
        self._host = host
        self._options: PackagerOptions | None = None
        self._runner: web.AppRunner | None = None
        self._client: aiohttp.ClientSession | None = None

    @property
    def is_listening(self) -> bool:
        return self._runner is not None

    async def start(self, options: PackagerOptions) -> web.AppRunner:
        """Close any previous listener, then listen on ``options.port``."""
        if not options.port or not options.packager_port:
            raise ConfigurationError("port and packager_port must be set before starting the local server")
        if not options.entry_point:
            raise ConfigurationError("entry_point must be resolved before starting the local server")

        await self.stop()

        self._options = options
        self._client = aiohttp.ClientSession(auto_decompress=False)
        runner = web.AppRunner(self._build_app())
        await runner.setup()
        try:
            site = web.TCPSite(runner, self._host, options.port)
            await site.start()
        except OSError:
            await runner.cleanup()
            await self._client.close()
            self._client = None
            raise
        self._runner = runner
        logger.info("Local server listening at http://%s:%d", self._host, options.port)
        return runner

    async def stop(self) -> None:
        if self._runner is None:
            return
        logger.info("Waiting for local server to close...")
        await self._runner.cleanup()
        self._runner = None
        if self._client:
            await self._client.close()
            self._client = None
        logger.info("Closed local server")

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _build_app(self) -> web.Application:
        app = web.Application()
        for prefix, handler in (("/bundle", self._handle_bundle), ("/map", self._handle_map)):
            app.router.add_route("*", prefix, handler)
            app.router.add_route("*", prefix + "/{tail:.*}", handler)
        for path in MANIFEST_PATHS:
            app.router.add_get(path, self._handle_manifest)
        app.router.add_route("*", "/{path:.*}", self._handle_passthrough)
        return app

    async def _handle_bundle(self, request: web.Request) -> web.StreamResponse:
        return await self._proxy(request, self._rewrite(request, "bundle"))

    async def _handle_map(self, request: web.Request) -> web.StreamResponse:
        return await self._proxy(request, self._rewrite(request, "map"))

    async def _handle_passthrough(self, request: web.Request) -> web.StreamResponse:
        if request.path in MANIFEST_PATHS:
            raise web.HTTPMethodNotAllowed(request.method, ["GET", "HEAD"])
        return await self._proxy(request, request.path_qs)

    def _rewrite(self, request: web.Request, extension: str) -> str:
        platform = request.headers.get(PLATFORM_HEADER) or DEFAULT_PLATFORM
        return packager_path(
            self._options.entry_point, extension, request.query_string, platform,
        )

    async def _proxy(self, request: web.Request, path_qs: str) -> web.StreamResponse:
        url = f"http://127.0.0.1:{self._options.packager_port}{path_qs}"
        headers = _forward_headers(request.headers, skip=frozenset({"content-length"}))
        body = await request.read() if request.can_read_body else None

        try:
            upstream = await self._client.request(
                request.method, url, headers=headers, data=body, allow_redirects=False,
            )
        except aiohttp.ClientError as e:
            logger.warning("Packager unreachable for %s: %s", path_qs, e)
            return web.json_response({"error": f"Packager unavailable: {e}"}, status=502)

        async with upstream:
            response = web.StreamResponse(status=upstream.status, reason=upstream.reason)
            for key, value in upstream.headers.items():
                if key.lower() not in _HOP_BY_HOP:
                    response.headers.add(key, value)
            await response.prepare(request)
            async for chunk in upstream.content.iter_chunked(_CHUNK_SIZE):
                await response.write(chunk)
            await response.write_eof()
        return response

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    async def _handle_manifest(self, request: web.Request) -> web.Response:
        try:
            # Not awaited: a broken package.json must not slow or fail the response.
            self._validator.schedule()

            manifest = await self.build_manifest()
            manifest_string = json.dumps(manifest, separators=(",", ":"))

            user = await self._session.current_user()
            if request.headers.get(ACCEPT_SIGNATURE_HEADER) and user:
                manifest_string = await self._cache.get_signed(
                    manifest_string, lambda: self._sign(user, manifest),
                )
            return web.Response(text=manifest_string, content_type="application/json")
        except Exception as e:
            logger.exception("Error in manifest handler")
            return web.json_response({"error": str(e)}, status=MANIFEST_ERROR_STATUS)

    async def build_manifest(self) -> dict:
        """Unsigned manifest for the current project and runtime state."""
        options = self._options
        pkg = await self._source.read_manifest(options.absolute_path) or {}
        manifest = dict(pkg.get("exp") or {})
        packager_opts = await self._settings.read(options.absolute_path)
        query = bundle_query_params(packager_opts)
        tunnel_url = self._tunnel_url()

        # bundlePath is kept for older clients; new ones read bundleUrl.
        manifest["bundlePath"] = "bundle?" + query
        manifest["xde"] = True
        manifest["bundleUrl"] = construct_bundle_url(
            packager_opts, port=options.port, tunnel_url=tunnel_url,
        ) + "?" + query
        manifest["debuggerHost"] = construct_debugger_host(
            packager_opts, port=options.port, tunnel_url=tunnel_url,
        )
        manifest["mainModuleName"] = guess_main_module_path(options.entry_point)
        return manifest

    async def _sign(self, user: User, manifest: dict) -> str:
        name = self._options.project_short_name
        args = {
            "username": user.username,
            "remoteUsername": user.username,
            "remotePackageName": name,
            "remoteFullPackageName": f"@{user.username}/{name}",
            "sdkVersion": manifest.get("sdkVersion"),
        }
        return await self._api.sign_manifest(args, manifest)

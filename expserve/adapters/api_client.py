"""Remote API client (manifest signing, SDK version table)."""
from __future__ import annotations

import json
import logging
from urllib.parse import quote

import aiohttp

from expserve.core.errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ApiClient:
    """Calls ``<base>/--/api/<method>/<json args>`` and ``<base>/--/sdk-versions``."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def method_url(self, method_name: str, args: list) -> str:
        encoded = quote(json.dumps(args, separators=(",", ":")), safe="")
        return f"{self._base_url}/--/api/{method_name}/{encoded}"

    async def call_method(
        self,
        method_name: str,
        args: list,
        http_method: str = "get",
        body: dict | None = None,
    ) -> dict:
        """Call an API method and return its decoded JSON payload.

        Raises ApiError if the server reports ``err`` or a non-2xx status.
        """
        url = self.method_url(method_name, args)
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.request(http_method.upper(), url, json=body) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise ApiError(f"API {method_name} failed ({resp.status}): {text[:200]}")
                result = await resp.json(content_type=None)

        if isinstance(result, dict) and result.get("err"):
            raise ApiError(f"API {method_name} error: {result['err']}")
        return result

    async def sign_manifest(self, args: dict, manifest: dict) -> str:
        result = await self.call_method("signManifest", [args], "post", manifest)
        signed = result.get("response")
        if not isinstance(signed, str):
            raise ApiError("signManifest returned no signed manifest")
        logger.info("Signed manifest for %s", args.get("remoteFullPackageName"))
        return signed

    async def fetch_sdk_versions(self) -> dict | None:
        url = f"{self._base_url}/--/sdk-versions"
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.get(url) as resp:
                if resp.status >= 400:
                    logger.warning("SDK version table unavailable (%d)", resp.status)
                    return None
                data = await resp.json(content_type=None)
        return data if isinstance(data, dict) else None

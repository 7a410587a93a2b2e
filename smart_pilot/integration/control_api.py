"""HTTP client for the proxy engine's control API.

Endpoints used:
- GET  /proxies                     — groups, their members and active node
- GET  /proxies/:name/delay         — engine-side latency test of one node
- PUT  /proxies/:group              — switch a selector group's active node
- PUT  /configs?force=true          — reload the engine configuration file

Every request carries an explicit timeout. Transport failures are raised as
``TransientNetworkError``; non-2xx answers as ``ControlAPIError``.

The address and secret may come from an ``endpoint`` callable that is asked
again before every request, so a profile applied during recovery that moves
the controller or changes its secret takes effect immediately.
"""

from __future__ import annotations

import logging
from typing import Any, Callable
from urllib.parse import quote

import httpx

from smart_pilot.middleware.error_handler import (
    ConfigurationError,
    ControlAPIError,
    TransientNetworkError,
)
from smart_pilot.proxy.types import ProxyGroup

logger = logging.getLogger(__name__)

# Returns (base_url, secret) for the next request
EndpointResolver = Callable[[], tuple[str, str | None]]


class ProxyControlClient:
    """Async client for the engine control API.

    Parameters
    ----------
    base_url:
        Fixed control API root, e.g. ``http://127.0.0.1:9090``.
    secret:
        Optional bearer secret used with ``base_url``.
    endpoint:
        Resolver called before every request instead of the fixed pair.
    timeout_seconds:
        Timeout for group reads, switches and config reloads (default 10).
    transport:
        Optional httpx transport override.
    """

    def __init__(
        self,
        base_url: str | None = None,
        secret: str | None = None,
        *,
        endpoint: EndpointResolver | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if endpoint is None:
            if base_url is None:
                raise ValueError("ProxyControlClient needs a base_url or an endpoint resolver")
            fixed = (base_url, secret)

            def endpoint() -> tuple[str, str | None]:
                return fixed

        self._endpoint = endpoint
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def resolve(self) -> tuple[str, str | None]:
        """Current control API root and secret."""
        base_url, secret = self._endpoint()
        return base_url.rstrip("/"), secret

    @staticmethod
    def _headers(secret: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if secret:
            headers["Authorization"] = f"Bearer {secret}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        base_url, secret = self.resolve()
        try:
            async with httpx.AsyncClient(base_url=base_url, transport=self._transport) as client:
                response = await client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers=self._headers(secret),
                    timeout=timeout,
                )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"Control API {method} {path} timed out", path=path
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(
                f"Control API {method} {path} unreachable: {exc}", path=path
            ) from exc

        if response.is_error:
            raise ControlAPIError(
                f"Control API {method} {path} returned {response.status_code}",
                path=path,
                status=response.status_code,
            )
        return response

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def get_groups(self) -> dict[str, ProxyGroup]:
        """Return every selector-like group keyed by name.

        Entries without an ``all`` member list (plain nodes) are skipped.
        """
        response = await self._request("GET", "/proxies", timeout=self._timeout_seconds)
        payload = response.json()
        proxies = payload.get("proxies") if isinstance(payload, dict) else None
        if not isinstance(proxies, dict):
            raise ControlAPIError("Control API returned no proxies table", path="/proxies")

        groups: dict[str, ProxyGroup] = {}
        for name, entry in proxies.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("all"), list):
                continue
            try:
                groups[name] = ProxyGroup(
                    name=name,
                    members=tuple(entry["all"]),
                    active_member=entry.get("now", ""),
                )
            except ConfigurationError as exc:
                logger.warning("Skipping inconsistent group %s: %s", name, exc, extra={"group": name})
        return groups

    async def switch_active(self, group: str, node: str) -> None:
        """Make ``node`` the active member of ``group``."""
        await self._request(
            "PUT",
            f"/proxies/{quote(group, safe='')}",
            json={"name": node},
            timeout=self._timeout_seconds,
        )
        logger.debug("Switched group %s to %s", group, node, extra={"group": group, "node": node})

    # ------------------------------------------------------------------
    # Latency
    # ------------------------------------------------------------------

    async def get_delay(self, node: str, timeout_ms: int, url: str) -> int:
        """Ask the engine to measure ``node``; returns milliseconds."""
        response = await self._request(
            "GET",
            f"/proxies/{quote(node, safe='')}/delay",
            params={"timeout": timeout_ms, "url": url},
            # engine-side timeout plus transport slack
            timeout=timeout_ms / 1000 + 1.0,
        )
        payload = response.json()
        delay = payload.get("delay") if isinstance(payload, dict) else None
        if not isinstance(delay, (int, float)) or isinstance(delay, bool):
            raise ControlAPIError(f"Control API returned no delay for {node}", node=node)
        return int(delay)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def reload_config(self, path: str) -> None:
        """Ask the engine to reload its configuration from ``path``."""
        await self._request(
            "PUT",
            "/configs",
            params={"force": "true"},
            json={"path": path},
            timeout=self._timeout_seconds,
        )
        logger.info("Engine configuration reloaded from %s", path)

"""Single-node latency probe through the engine's control API."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from smart_pilot.proxy.types import LatencySample

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_MS = 5000
DEFAULT_PROBE_URL = "http://www.gstatic.com/generate_204"

# Extra wall-clock allowance on top of the engine-side timeout so the engine
# gets the chance to report its own timeout first.
_TIMEOUT_GRACE_SECONDS = 1.0


class DelayAPI(Protocol):
    async def get_delay(self, node: str, timeout_ms: int, url: str) -> int: ...


class HealthProbe:
    """Measures one node's latency, mapping every failure to a timeout sample.

    Parameters
    ----------
    api:
        Anything with an async ``get_delay(node, timeout_ms, url)``.
    timeout_ms:
        Engine-side probe timeout (default 5000).
    probe_url:
        Target URL the engine requests through the node.
    """

    def __init__(
        self,
        api: DelayAPI,
        timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
        probe_url: str = DEFAULT_PROBE_URL,
    ) -> None:
        self._api = api
        self._timeout_ms = timeout_ms
        self._probe_url = probe_url

    async def probe(self, node: str) -> LatencySample:
        """Probe ``node`` once. Never raises (cancellation excepted)."""
        try:
            latency = await asyncio.wait_for(
                self._api.get_delay(node, self._timeout_ms, self._probe_url),
                timeout=self._timeout_ms / 1000 + _TIMEOUT_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.debug("Probe timed out for node %s", node, extra={"node": node})
            return LatencySample.timeout(node)
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                "Probe failed for node %s: %s",
                node,
                exc,
                extra={"node": node, "error_reason": str(exc)},
            )
            return LatencySample.timeout(node)

        return LatencySample.ok(node, int(latency))

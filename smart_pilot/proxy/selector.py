"""Bounded fan-out best-node selection.

Only the first ``max_candidates`` names of a pool are probed, all at once;
the selector waits for every probe to finish before choosing. Samples that
timed out or are at/above the acceptance threshold are dropped, and the
lowest latency wins, ties going to the earlier candidate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from smart_pilot.proxy.probe import HealthProbe
from smart_pilot.proxy.types import LatencySample

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5
ACCEPT_THRESHOLD_MS = 2000


class NodeSelector:
    """Picks the fastest acceptable node from an ordered candidate pool."""

    def __init__(
        self,
        probe: HealthProbe,
        max_candidates: int = MAX_CANDIDATES,
        accept_threshold_ms: int = ACCEPT_THRESHOLD_MS,
    ) -> None:
        self._probe = probe
        self._max_candidates = max_candidates
        self._accept_threshold_ms = accept_threshold_ms

    async def select_best(self, candidates: Sequence[str]) -> LatencySample | None:
        """Return the winning sample, or ``None`` if no candidate qualifies."""
        if not candidates:
            return None

        selected = list(candidates[: self._max_candidates])
        samples = await asyncio.gather(*(self._probe.probe(node) for node in selected))

        for sample in samples:
            logger.info(
                "Candidate %s: %s",
                sample.node,
                sample.describe(),
                extra={"node": sample.node, "latency_ms": sample.latency_ms},
            )

        return pick_best(samples, self._accept_threshold_ms)


def pick_best(
    samples: Sequence[LatencySample], accept_threshold_ms: int = ACCEPT_THRESHOLD_MS
) -> LatencySample | None:
    """Lowest-latency sample under the threshold; earliest wins on ties."""
    best: LatencySample | None = None
    for sample in samples:
        if not sample.below(accept_threshold_ms):
            continue
        # strict comparison keeps the earlier sample on ties
        if best is None or sample.latency_ms < best.latency_ms:  # type: ignore[operator]
            best = sample
    return best

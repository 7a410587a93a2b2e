"""Property tests for node selection.

Validates the bounded fan-out (never more than five probes, always the first
five candidates) and the choice rule (minimum latency under 2000 ms, earliest
candidate on ties, none when nothing qualifies).
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from smart_pilot.proxy.probe import HealthProbe
from smart_pilot.proxy.selector import NodeSelector, pick_best
from smart_pilot.proxy.types import LatencySample
from tests.conftest import candidate_pools, latencies
from tests.fakes import FakeControlAPI, run_async


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# A pool plus one outcome per member
pools_with_outcomes = candidate_pools.flatmap(
    lambda pool: st.tuples(
        st.just(pool),
        st.lists(latencies, min_size=len(pool), max_size=len(pool)),
    )
)


def _reference_best(pool: list[str], outcomes: list[int | None]) -> str | None:
    """Straightforward restatement of the selection rule over the first five."""
    best_node, best_ms = None, None
    for node, ms in list(zip(pool, outcomes))[:5]:
        if ms is None or ms >= 2000:
            continue
        if best_ms is None or ms < best_ms:
            best_node, best_ms = node, ms
    return best_node


# ---------------------------------------------------------------------------
# Bounded fan-out
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(data=pools_with_outcomes)
def test_at_most_five_concurrent_probes(data) -> None:
    pool, outcomes = data
    delays = {n: ms for n, ms in zip(pool, outcomes) if ms is not None}
    api = FakeControlAPI(pool or ["x"], (pool or ["x"])[0], delays)

    run_async(NodeSelector(HealthProbe(api)).select_best(pool))

    assert api.max_in_flight <= 5
    assert len(api.delay_calls) == min(len(pool), 5)


@settings(max_examples=100)
@given(data=pools_with_outcomes)
def test_only_leading_candidates_probed(data) -> None:
    pool, outcomes = data
    delays = {n: ms for n, ms in zip(pool, outcomes) if ms is not None}
    api = FakeControlAPI(pool or ["x"], (pool or ["x"])[0], delays)

    run_async(NodeSelector(HealthProbe(api)).select_best(pool))

    assert set(api.delay_calls) == set(pool[:5])


# ---------------------------------------------------------------------------
# Choice rule
# ---------------------------------------------------------------------------


@settings(max_examples=200)
@given(data=pools_with_outcomes)
def test_selector_matches_reference_rule(data) -> None:
    pool, outcomes = data
    delays = {n: ms for n, ms in zip(pool, outcomes) if ms is not None}
    api = FakeControlAPI(pool or ["x"], (pool or ["x"])[0], delays)

    result = run_async(NodeSelector(HealthProbe(api)).select_best(pool))

    expected = _reference_best(pool, outcomes)
    assert (result.node if result else None) == expected
    if result is not None:
        assert result.latency_ms < 2000


@settings(max_examples=200)
@given(outcomes=st.lists(latencies, min_size=0, max_size=12))
def test_pick_best_returns_minimum_under_threshold(outcomes: list[int | None]) -> None:
    samples = [
        LatencySample.timeout(f"n{i}") if ms is None else LatencySample.ok(f"n{i}", ms)
        for i, ms in enumerate(outcomes)
    ]
    best = pick_best(samples)

    accepted = [s for s in samples if s.latency_ms is not None and s.latency_ms < 2000]
    if not accepted:
        assert best is None
        return

    minimum = min(s.latency_ms for s in accepted)
    assert best.latency_ms == minimum
    # earliest among equals
    assert best == next(s for s in accepted if s.latency_ms == minimum)

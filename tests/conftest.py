"""Shared fixtures and hypothesis strategies for the pilot test suite."""

from __future__ import annotations

import os

import pytest
from hypothesis import strategies as st

from smart_pilot.config.settings import PilotSettings


# ---------------------------------------------------------------------------
# Keep PILOT_* variables from the developer's shell out of the tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_pilot_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for key in list(os.environ):
        if key.startswith("PILOT_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("PILOT_HOME_DIR", str(tmp_path / "home"))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> PilotSettings:
    """Test settings rooted in a temporary home directory."""
    return PilotSettings(home_dir=tmp_path / "pilot")


@pytest.fixture
def events() -> list:
    return []


# ---------------------------------------------------------------------------
# Hypothesis strategies (reusable across property tests)
# ---------------------------------------------------------------------------

node_names = st.from_regex(r"node-[a-z0-9]{1,8}", fullmatch=True)

# Unique ordered candidate pools
candidate_pools = st.lists(node_names, min_size=0, max_size=15, unique=True)

# Probe outcomes: a latency reading or None for a timeout
latencies = st.one_of(st.none(), st.integers(min_value=0, max_value=5000))

"""Failover controller: the pilot's supervisory state machine.

States:
- Steady: probe the active node; healthy → sleep and probe again.
- Degraded: the active node is slow or unreachable; start region fallback.
- RegionFallback(i): look for a healthy node in region tier ``i``; on a
  winner switch to it and return to Steady, otherwise try tier ``i + 1``.
- DisasterRecovery(1..4): disable system proxy → refresh every subscription
  → re-enable system proxy → reselect from the whole group.
- RecoveryWait: nothing reachable after recovery; wait, then rerun recovery.

``step()`` performs exactly one transition and returns how long to wait
before the next. ``run()`` wraps it: any error escaping a step is logged at
the cycle boundary, the state is kept, and the loop backs off. The loop ends
only when ``stop()`` is called; the stop event is checked before every wait.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Protocol

from smart_pilot.middleware.error_handler import ConfigurationError
from smart_pilot.proxy.probe import HealthProbe
from smart_pilot.proxy.regions import RegionClassifier
from smart_pilot.proxy.selector import NodeSelector
from smart_pilot.proxy.types import LatencySample, ProxyGroup, SubscriptionRef

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


class ControlAPI(Protocol):
    async def get_groups(self) -> dict[str, ProxyGroup]: ...

    async def switch_active(self, group: str, node: str) -> None: ...


class SubscriptionSource(Protocol):
    def list(self) -> list[SubscriptionRef]: ...

    async def refresh(self, name: str) -> None: ...


class NetworkToggle(Protocol):
    async def enable(self) -> None: ...

    async def disable(self) -> None: ...


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    """Failover phases."""

    STEADY = "steady"
    DEGRADED = "degraded"
    REGION_FALLBACK = "region_fallback"
    DISASTER_RECOVERY = "disaster_recovery"
    RECOVERY_WAIT = "recovery_wait"


@dataclass(frozen=True)
class FailoverState:
    """Current phase plus its index (region tier or recovery step)."""

    phase: Phase
    index: int | None = None

    @classmethod
    def steady(cls) -> FailoverState:
        return cls(Phase.STEADY)

    @classmethod
    def degraded(cls) -> FailoverState:
        return cls(Phase.DEGRADED)

    @classmethod
    def region_fallback(cls, region_index: int) -> FailoverState:
        return cls(Phase.REGION_FALLBACK, region_index)

    @classmethod
    def disaster_recovery(cls, step: int) -> FailoverState:
        return cls(Phase.DISASTER_RECOVERY, step)

    @classmethod
    def recovery_wait(cls) -> FailoverState:
        return cls(Phase.RECOVERY_WAIT)

    def __str__(self) -> str:
        name = "".join(part.capitalize() for part in self.phase.value.split("_"))
        return name if self.index is None else f"{name}({self.index})"


@dataclass(frozen=True)
class RefreshOutcome:
    name: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RecoveryReport:
    """Per-subscription results of the latest refresh step."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    outcomes: list[RefreshOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.ok]


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class FailoverController:
    """Keeps the active node of one proxy group healthy.

    Parameters
    ----------
    api:
        Control API (group snapshot and node switching).
    store:
        Subscription store refreshed during disaster recovery.
    network:
        System proxy toggle used around the subscription refresh.
    probe:
        Probe used for the active node in Steady.
    selector:
        Best-node selector for region tiers and full reselection.
    classifier:
        Region tier table, in fallback priority order.
    group_name:
        Selector group the pilot manages (default ``"Proxy"``).
    healthy_threshold_ms:
        Active node latency below this keeps the pilot Steady (default 1500).
    steady_interval, switch_cooldown, recovery_wait, error_backoff, config_error_backoff:
        Waits in seconds after a healthy probe, after a switch, after a failed
        recovery, after a failed cycle, and after a missing group.
    """

    def __init__(
        self,
        *,
        api: ControlAPI,
        store: SubscriptionSource,
        network: NetworkToggle,
        probe: HealthProbe,
        selector: NodeSelector,
        classifier: RegionClassifier,
        group_name: str = "Proxy",
        healthy_threshold_ms: int = 1500,
        steady_interval: float = 10.0,
        switch_cooldown: float = 5.0,
        recovery_wait: float = 60.0,
        error_backoff: float = 5.0,
        config_error_backoff: float = 10.0,
    ) -> None:
        self._api = api
        self._store = store
        self._network = network
        self._probe = probe
        self._selector = selector
        self._classifier = classifier
        self._group_name = group_name
        self._healthy_threshold_ms = healthy_threshold_ms
        self._steady_interval = steady_interval
        self._switch_cooldown = switch_cooldown
        self._recovery_wait = recovery_wait
        self._error_backoff = error_backoff
        self._config_error_backoff = config_error_backoff

        self._state = FailoverState.steady()
        self._group: ProxyGroup | None = None
        self._last_sample: LatencySample | None = None
        self._last_recovery: RecoveryReport | None = None
        self._cycles = 0
        self._stop = asyncio.Event()
        self._switch_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> FailoverState:
        return self._state

    @property
    def last_sample(self) -> LatencySample | None:
        return self._last_sample

    @property
    def last_recovery(self) -> RecoveryReport | None:
        return self._last_recovery

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def get_status(self) -> dict:
        """Snapshot for the status API."""
        sample = self._last_sample
        report = self._last_recovery
        return {
            "state": str(self._state),
            "phase": self._state.phase.value,
            "group": self._group_name,
            "active_node": self._group.active_member if self._group else None,
            "cycles": self._cycles,
            "last_probe": (
                {"node": sample.node, "latency_ms": sample.latency_ms, "timeout": sample.is_timeout}
                if sample
                else None
            ),
            "last_recovery": (
                {
                    "started_at": report.started_at.isoformat(),
                    "refreshed": [o.name for o in report.outcomes if o.ok],
                    "failed": report.failed,
                }
                if report
                else None
            ),
            "stopping": self.stopping,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Request shutdown; takes effect at the next wait or loop iteration."""
        if not self._stop.is_set():
            logger.info("Stop requested", extra={"state": str(self._state)})
            self._stop.set()

    async def run(self) -> None:
        """Supervisory loop. Returns only after ``stop()``."""
        logger.info(
            "Smart pilot started for group %s",
            self._group_name,
            extra={"group": self._group_name, "state": str(self._state)},
        )
        while not self._stop.is_set():
            self._cycles += 1
            try:
                delay = await self.step()
            except ConfigurationError as exc:
                logger.error(
                    "Configuration error in %s: %s — retrying in %.0fs",
                    self._state,
                    exc,
                    self._config_error_backoff,
                    extra={"state": str(self._state), "error_reason": str(exc)},
                )
                delay = self._config_error_backoff
            except Exception as exc:
                logger.error(
                    "Cycle failed in %s: %s — retrying in %.0fs",
                    self._state,
                    exc,
                    self._error_backoff,
                    exc_info=True,
                    extra={"state": str(self._state), "error_reason": str(exc)},
                )
                delay = self._error_backoff
            await self._sleep(delay)
        logger.info("Smart pilot stopped", extra={"state": str(self._state)})

    async def _sleep(self, seconds: float) -> None:
        if self._stop.is_set() or seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def step(self) -> float:
        """Execute the current state's action once; return the wait before the next step."""
        phase = self._state.phase
        if phase is Phase.STEADY:
            return await self._check_active()
        if phase is Phase.DEGRADED:
            return self._begin_fallback()
        if phase is Phase.REGION_FALLBACK:
            return await self._try_region(self._state.index or 0)
        if phase is Phase.DISASTER_RECOVERY:
            return await self._recover(self._state.index or 1)
        # RecoveryWait: the wait was served on entry; restart recovery
        self._transition(FailoverState.disaster_recovery(1))
        return 0.0

    # ------------------------------------------------------------------
    # Steady / fallback
    # ------------------------------------------------------------------

    async def _check_active(self) -> float:
        group = await self._fetch_group()
        sample = await self._probe.probe(group.active_member)
        self._last_sample = sample
        extra = {"node": sample.node, "latency_ms": sample.latency_ms, "state": str(self._state)}

        if sample.below(self._healthy_threshold_ms):
            logger.info("Checking %s... OK (%s)", sample.node, sample.describe(), extra=extra)
            return self._steady_interval

        if sample.is_timeout:
            logger.warning("Checking %s... timeout", sample.node, extra=extra)
        else:
            logger.warning(
                "Checking %s... high latency (%s)", sample.node, sample.describe(), extra=extra
            )
        self._transition(FailoverState.degraded())
        return 0.0

    def _begin_fallback(self) -> float:
        logger.warning("Connection unstable — initiating fallback protocol")
        if len(self._classifier) == 0:
            self._transition(FailoverState.disaster_recovery(1))
        else:
            self._transition(FailoverState.region_fallback(0))
        return 0.0

    async def _try_region(self, index: int) -> float:
        group = self._group or await self._fetch_group()
        label = self._classifier.label(index)
        pool = self._classifier.pool_for(index, group.members)
        logger.info(
            "Searching for healthy %s nodes (%d candidates)",
            label,
            len(pool),
            extra={"region": label, "state": str(self._state)},
        )

        winner = await self._selector.select_best(pool)
        if winner is not None:
            logger.info(
                "Found %s node: %s (%s)",
                label,
                winner.node,
                winner.describe(),
                extra={"region": label, "node": winner.node, "latency_ms": winner.latency_ms},
            )
            await self._switch(winner.node)
            self._transition(FailoverState.steady())
            return self._switch_cooldown

        logger.warning("No healthy %s nodes found", label, extra={"region": label})
        if index < len(self._classifier) - 1:
            self._transition(FailoverState.region_fallback(index + 1))
        else:
            logger.error("All fallback regions failed — initiating emergency recovery")
            self._transition(FailoverState.disaster_recovery(1))
        return 0.0

    # ------------------------------------------------------------------
    # Disaster recovery
    # ------------------------------------------------------------------

    async def _recover(self, step: int) -> float:
        if step == 1:
            logger.warning("Recovery 1/4: disabling system proxy")
            await self._best_effort("disable system proxy", self._network.disable)
            self._transition(FailoverState.disaster_recovery(2))
            return 0.0

        if step == 2:
            logger.warning("Recovery 2/4: refreshing subscriptions")
            self._last_recovery = await self._refresh_subscriptions()
            self._transition(FailoverState.disaster_recovery(3))
            return 0.0

        if step == 3:
            logger.warning("Recovery 3/4: re-enabling system proxy")
            await self._best_effort("enable system proxy", self._network.enable)
            self._transition(FailoverState.disaster_recovery(4))
            return 0.0

        logger.warning("Recovery 4/4: selecting best node from the full pool")
        group = await self._fetch_group()
        winner = await self._selector.select_best(group.members)
        if winner is not None:
            await self._switch(winner.node)
            logger.info(
                "Recovered — switched to %s (%s)",
                winner.node,
                winner.describe(),
                extra={"node": winner.node, "latency_ms": winner.latency_ms},
            )
            self._transition(FailoverState.steady())
            return self._switch_cooldown

        logger.error(
            "Recovery failed — no reachable nodes; retrying in %.0fs", self._recovery_wait
        )
        self._transition(FailoverState.recovery_wait())
        return self._recovery_wait

    async def _refresh_subscriptions(self) -> RecoveryReport:
        report = RecoveryReport()
        try:
            refs = self._store.list()
        except Exception as exc:
            logger.error(
                "Cannot list subscriptions: %s", exc, extra={"error_reason": str(exc)}
            )
            return report

        for ref in refs:
            try:
                await self._store.refresh(ref.name)
            except Exception as exc:
                logger.error(
                    "Updating %s... failed: %s",
                    ref.name,
                    exc,
                    extra={"subscription": ref.name, "error_reason": str(exc)},
                )
                report.outcomes.append(RefreshOutcome(ref.name, str(exc) or type(exc).__name__))
            else:
                logger.info("Updating %s... done", ref.name, extra={"subscription": ref.name})
                report.outcomes.append(RefreshOutcome(ref.name))
        return report

    async def _best_effort(self, action: str, operation: Callable[[], Awaitable[None]]) -> None:
        try:
            await operation()
        except Exception as exc:
            logger.warning(
                "Could not %s: %s — continuing", action, exc, extra={"error_reason": str(exc)}
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch_group(self) -> ProxyGroup:
        groups = await self._api.get_groups()
        group = groups.get(self._group_name)
        if group is None:
            raise ConfigurationError(
                f"Group '{self._group_name}' not found", group=self._group_name
            )
        self._group = group
        return group

    async def _switch(self, node: str) -> None:
        async with self._switch_lock:
            await self._api.switch_active(self._group_name, node)
        logger.info(
            "Switched to %s", node, extra={"group": self._group_name, "node": node}
        )

    def _transition(self, new_state: FailoverState) -> None:
        old_state = self._state
        self._state = new_state
        logger.info(
            "State %s -> %s",
            old_state,
            new_state,
            extra={
                "from_state": str(old_state),
                "to_state": str(new_state),
                "state": str(new_state),
            },
        )

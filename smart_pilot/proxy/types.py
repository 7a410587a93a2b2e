"""Value types shared by the probe, selector, classifier and controller."""

from __future__ import annotations

from dataclasses import dataclass

from smart_pilot.middleware.error_handler import ConfigurationError


@dataclass(frozen=True)
class ProxyGroup:
    """Read-only snapshot of a selector group as reported by the control API."""

    name: str
    members: tuple[str, ...]
    active_member: str

    def __post_init__(self) -> None:
        if len(set(self.members)) != len(self.members):
            raise ConfigurationError(
                f"Proxy group '{self.name}' has duplicate members", group=self.name
            )
        if self.active_member not in self.members:
            raise ConfigurationError(
                f"Active node '{self.active_member}' is not a member of group '{self.name}'",
                group=self.name,
            )


@dataclass(frozen=True)
class LatencySample:
    """Outcome of one latency probe.

    ``latency_ms`` is ``None`` for a timeout. A measured ``0`` is a valid
    reading and is never treated as a timeout.
    """

    node: str
    latency_ms: int | None

    @classmethod
    def ok(cls, node: str, latency_ms: int) -> LatencySample:
        return cls(node=node, latency_ms=latency_ms)

    @classmethod
    def timeout(cls, node: str) -> LatencySample:
        return cls(node=node, latency_ms=None)

    @property
    def is_timeout(self) -> bool:
        return self.latency_ms is None

    def below(self, threshold_ms: int) -> bool:
        """True when the sample is a measurement strictly under ``threshold_ms``."""
        return self.latency_ms is not None and self.latency_ms < threshold_ms

    def describe(self) -> str:
        return "timeout" if self.latency_ms is None else f"{self.latency_ms}ms"


@dataclass(frozen=True)
class SubscriptionRef:
    """Read-only view of a stored subscription."""

    name: str
    source_url: str

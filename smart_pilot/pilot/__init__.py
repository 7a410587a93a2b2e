"""Failover controller and single-instance guard."""

from smart_pilot.pilot.controller import FailoverController, FailoverState, Phase
from smart_pilot.pilot.lock import InstanceLock

__all__ = ["FailoverController", "FailoverState", "InstanceLock", "Phase"]

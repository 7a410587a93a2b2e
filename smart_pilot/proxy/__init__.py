"""Node probing, selection and region classification."""

from smart_pilot.proxy.probe import HealthProbe
from smart_pilot.proxy.regions import RegionClassifier
from smart_pilot.proxy.selector import NodeSelector
from smart_pilot.proxy.types import LatencySample, ProxyGroup, SubscriptionRef

__all__ = [
    "HealthProbe",
    "LatencySample",
    "NodeSelector",
    "ProxyGroup",
    "RegionClassifier",
    "SubscriptionRef",
]

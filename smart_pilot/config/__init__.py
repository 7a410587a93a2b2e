"""Configuration module — settings, engine config view and region tiers."""

from smart_pilot.config.engine import EngineConfig, controller_resolver, load_engine_config
from smart_pilot.config.regions import DEFAULT_REGION_RULES, RegionRule, load_region_rules
from smart_pilot.config.settings import PilotSettings

__all__ = [
    "DEFAULT_REGION_RULES",
    "EngineConfig",
    "PilotSettings",
    "RegionRule",
    "controller_resolver",
    "load_engine_config",
    "load_region_rules",
]

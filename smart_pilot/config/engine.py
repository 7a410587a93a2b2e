"""Read-only view of the proxy engine's YAML configuration.

Only the handful of keys the pilot needs are read: the control API address
and secret, and the local HTTP proxy ports. The file is never written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import yaml

from smart_pilot.config.settings import PilotSettings

logger = logging.getLogger(__name__)

DEFAULT_CONTROLLER = "127.0.0.1:9090"
DEFAULT_PROXY_PORT = 7890


@dataclass(frozen=True)
class EngineConfig:
    """Subset of the engine configuration relevant to the pilot."""

    external_controller: str | None = None
    secret: str | None = None
    port: int = 0
    mixed_port: int = 0


def load_engine_config(path: Path) -> EngineConfig:
    """Parse the engine config, returning an empty view when it is unusable."""
    if not path.exists():
        logger.debug("Engine config not found at %s", path)
        return EngineConfig()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse engine config at %s: %s", path, exc)
        return EngineConfig()

    if not isinstance(raw, dict):
        logger.warning("Engine config at %s is not a mapping — ignoring", path)
        return EngineConfig()

    return EngineConfig(
        external_controller=raw.get("external-controller") or None,
        secret=raw.get("secret") or None,
        port=int(raw.get("port") or 0),
        mixed_port=int(raw.get("mixed-port") or 0),
    )


def resolve_controller(settings: PilotSettings, engine: EngineConfig) -> tuple[str, str | None]:
    """Control API base URL and secret: explicit settings, then engine config, then defaults."""
    if settings.controller_url:
        base_url = settings.controller_url
    else:
        base_url = f"http://{engine.external_controller or DEFAULT_CONTROLLER}"
    secret = settings.controller_secret or engine.secret
    return base_url.rstrip("/"), secret


def resolve_proxy_port(settings: PilotSettings, engine: EngineConfig) -> int:
    """HTTP proxy port to publish to the OS."""
    return settings.proxy_port or engine.port or engine.mixed_port or DEFAULT_PROXY_PORT


def controller_resolver(settings: PilotSettings) -> Callable[[], tuple[str, str | None]]:
    """Resolver that re-reads the engine config on every call.

    Applying a subscription replaces the engine config, and the new profile
    may move the control API or change its secret.
    """
    path = settings.resolved_engine_config_path

    def resolve() -> tuple[str, str | None]:
        return resolve_controller(settings, load_engine_config(path))

    return resolve

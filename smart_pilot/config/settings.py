"""Pydantic Settings for the smart pilot.

All environment variables use the PILOT_ prefix.
Example: PILOT_GROUP_NAME=Proxy, PILOT_STATUS_PORT=9091
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class PilotSettings(BaseSettings):
    """Pilot configuration validated from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None  # Append-only log stream in addition to stderr

    # Local state
    home_dir: Path = Field(default_factory=lambda: Path.home() / ".smart-pilot")

    # Control API (falls back to the engine config, then 127.0.0.1:9090)
    controller_url: str | None = None
    controller_secret: str | None = None
    engine_config_path: Path | None = None  # Defaults to <home_dir>/config.yaml
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Probing
    group_name: str = "Proxy"
    probe_timeout_ms: int = Field(default=5000, ge=100)
    probe_url: str = "http://www.gstatic.com/generate_204"
    healthy_threshold_ms: int = Field(default=1500, ge=1)
    accept_threshold_ms: int = Field(default=2000, ge=1)

    # Loop timing
    steady_interval_seconds: float = Field(default=10.0, ge=0)
    switch_cooldown_seconds: float = Field(default=5.0, ge=0)
    recovery_wait_seconds: float = Field(default=60.0, ge=0)
    error_backoff_seconds: float = Field(default=5.0, ge=0)
    config_error_backoff_seconds: float = Field(default=10.0, ge=0)

    # Region tiers
    regions_path: Path | None = None

    # Subscriptions
    subscription_timeout_seconds: float = Field(default=30.0, gt=0)

    # System proxy
    manage_system_proxy: bool = True
    network_service: str = "Wi-Fi"  # macOS network service name
    proxy_host: str = "127.0.0.1"
    proxy_port: int | None = Field(default=None, ge=1, le=65535)
    command_timeout_seconds: float = Field(default=10.0, gt=0)

    # Status API (disabled unless a port is given)
    status_host: str = "127.0.0.1"
    status_port: int | None = Field(default=None, ge=1, le=65535)

    model_config = {"env_prefix": "PILOT_"}

    @property
    def resolved_engine_config_path(self) -> Path:
        return self.engine_config_path or self.home_dir / "config.yaml"

    @property
    def subscriptions_file(self) -> Path:
        return self.home_dir / "subscriptions.json"

    @property
    def profiles_dir(self) -> Path:
        return self.home_dir / "profiles"

    @property
    def lock_file(self) -> Path:
        return self.home_dir / "pilot.lock"

    @property
    def pid_file(self) -> Path:
        return self.home_dir / "pilot.pid"

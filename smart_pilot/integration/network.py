"""OS-level system proxy toggle.

Only a boolean enable/disable contract is offered. Both operations are
idempotent: the configurator remembers the last state it applied and a
repeated request for the same state does nothing.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from smart_pilot.middleware.error_handler import NetworkPermissionError

logger = logging.getLogger(__name__)

_WINDOWS_INTERNET_SETTINGS = r"HKCU\Software\Microsoft\Windows\CurrentVersion\Internet Settings"


class SystemProxyConfigurator:
    """Points the OS proxy settings at the local engine, or clears them.

    Parameters
    ----------
    host, port:
        Local HTTP proxy endpoint exposed by the engine.
    service:
        macOS network service name (ignored elsewhere).
    platform:
        ``sys.platform`` value; overridable for tests.
    timeout_seconds:
        Timeout per OS command.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 7890,
        service: str = "Wi-Fi",
        platform: str | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._service = service
        self._platform = platform or sys.platform
        self._timeout_seconds = timeout_seconds
        self._enabled: bool | None = None

    @property
    def enabled(self) -> bool | None:
        """Last state applied, or ``None`` if nothing has been applied yet."""
        return self._enabled

    async def enable(self) -> None:
        await self._set(True)

    async def disable(self) -> None:
        await self._set(False)

    async def _set(self, enabled: bool) -> None:
        label = "enable" if enabled else "disable"
        if self._enabled is enabled:
            logger.debug("System proxy already %sd — skipping", label)
            return

        for command in self.commands(enabled):
            await self._run(command)

        self._enabled = enabled
        logger.info("System proxy %sd", label)

    def commands(self, enabled: bool) -> list[list[str]]:
        """OS commands that apply the requested state on this platform."""
        server = f"{self._host}:{self._port}"

        if self._platform == "darwin":
            svc = self._service
            if not enabled:
                return [
                    ["networksetup", "-setwebproxystate", svc, "off"],
                    ["networksetup", "-setsecurewebproxystate", svc, "off"],
                    ["networksetup", "-setsocksfirewallproxystate", svc, "off"],
                ]
            return [
                ["networksetup", "-setwebproxy", svc, self._host, str(self._port)],
                ["networksetup", "-setsecurewebproxy", svc, self._host, str(self._port)],
                ["networksetup", "-setwebproxystate", svc, "on"],
                ["networksetup", "-setsecurewebproxystate", svc, "on"],
            ]

        if self._platform == "win32":
            reg = ["reg", "add", _WINDOWS_INTERNET_SETTINGS]
            if not enabled:
                return [reg + ["/v", "ProxyEnable", "/t", "REG_DWORD", "/d", "0", "/f"]]
            return [
                reg + ["/v", "ProxyServer", "/t", "REG_SZ", "/d", server, "/f"],
                reg + ["/v", "ProxyEnable", "/t", "REG_DWORD", "/d", "1", "/f"],
            ]

        # Linux desktops (GNOME settings schema)
        schema = "org.gnome.system.proxy"
        if not enabled:
            return [["gsettings", "set", schema, "mode", "none"]]
        return [
            ["gsettings", "set", f"{schema}.http", "host", self._host],
            ["gsettings", "set", f"{schema}.http", "port", str(self._port)],
            ["gsettings", "set", f"{schema}.https", "host", self._host],
            ["gsettings", "set", f"{schema}.https", "port", str(self._port)],
            ["gsettings", "set", schema, "mode", "manual"],
        ]

    async def _run(self, command: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (PermissionError, FileNotFoundError) as exc:
            raise NetworkPermissionError(
                f"Cannot run {command[0]}: {exc}", command=command[0]
            ) from exc

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise NetworkPermissionError(
                f"{command[0]} timed out after {self._timeout_seconds}s", command=command[0]
            ) from exc

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            raise NetworkPermissionError(
                f"{command[0]} exited with {process.returncode}: {detail}",
                command=command[0],
                returncode=process.returncode,
            )


class NullNetworkConfigurator:
    """Stand-in used when the pilot is not allowed to manage the system proxy."""

    async def enable(self) -> None:
        logger.debug("System proxy management disabled — enable skipped")

    async def disable(self) -> None:
        logger.debug("System proxy management disabled — disable skipped")

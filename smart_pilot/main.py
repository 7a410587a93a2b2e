"""Command-line entry point.

``smart-pilot run`` acquires the single-instance lock, wires the control API,
subscription store and system proxy toggle into a FailoverController, and
runs it until SIGINT/SIGTERM. With a status port configured, a read-only
status API is served on the same event loop.

``smart-pilot subscriptions ...`` manages the subscription store.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn

from smart_pilot.config.engine import controller_resolver, load_engine_config, resolve_proxy_port
from smart_pilot.config.regions import load_region_rules
from smart_pilot.config.settings import PilotSettings
from smart_pilot.integration.control_api import ProxyControlClient
from smart_pilot.integration.network import NullNetworkConfigurator, SystemProxyConfigurator
from smart_pilot.integration.subscriptions import SubscriptionStore
from smart_pilot.logging_config import configure_logging
from smart_pilot.middleware.error_handler import AlreadyRunningError, PilotError
from smart_pilot.pilot.controller import FailoverController
from smart_pilot.pilot.lock import InstanceLock
from smart_pilot.proxy.probe import HealthProbe
from smart_pilot.proxy.regions import RegionClassifier
from smart_pilot.proxy.selector import NodeSelector
from smart_pilot.routers.status import create_status_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_control_client(settings: PilotSettings) -> ProxyControlClient:
    return ProxyControlClient(
        endpoint=controller_resolver(settings),
        timeout_seconds=settings.request_timeout_seconds,
    )


def build_store(settings: PilotSettings, api: ProxyControlClient | None = None) -> SubscriptionStore:
    async def _reload(path: Path) -> None:
        if api is not None:
            await api.reload_config(str(path))

    return SubscriptionStore(
        index_path=settings.subscriptions_file,
        profiles_dir=settings.profiles_dir,
        engine_config_path=settings.resolved_engine_config_path,
        timeout_seconds=settings.subscription_timeout_seconds,
        on_apply=_reload,
    )


def build_controller(settings: PilotSettings) -> FailoverController:
    """Assemble a controller and its collaborators from settings."""
    api = build_control_client(settings)
    store = build_store(settings, api)

    if settings.manage_system_proxy:
        engine = load_engine_config(settings.resolved_engine_config_path)
        network: SystemProxyConfigurator | NullNetworkConfigurator = SystemProxyConfigurator(
            host=settings.proxy_host,
            port=resolve_proxy_port(settings, engine),
            service=settings.network_service,
            timeout_seconds=settings.command_timeout_seconds,
        )
    else:
        network = NullNetworkConfigurator()

    probe = HealthProbe(api, timeout_ms=settings.probe_timeout_ms, probe_url=settings.probe_url)
    return FailoverController(
        api=api,
        store=store,
        network=network,
        probe=probe,
        selector=NodeSelector(probe, accept_threshold_ms=settings.accept_threshold_ms),
        classifier=RegionClassifier(load_region_rules(settings.regions_path)),
        group_name=settings.group_name,
        healthy_threshold_ms=settings.healthy_threshold_ms,
        steady_interval=settings.steady_interval_seconds,
        switch_cooldown=settings.switch_cooldown_seconds,
        recovery_wait=settings.recovery_wait_seconds,
        error_backoff=settings.error_backoff_seconds,
        config_error_backoff=settings.config_error_backoff_seconds,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _install_signal_handlers(controller: FailoverController) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(controller.stop))


async def run_pilot(settings: PilotSettings) -> None:
    controller = build_controller(settings)
    _install_signal_handlers(controller)

    server: uvicorn.Server | None = None
    server_task: asyncio.Task[None] | None = None
    if settings.status_port is not None:
        server = uvicorn.Server(
            uvicorn.Config(
                create_status_app(controller),
                host=settings.status_host,
                port=settings.status_port,
                log_config=None,
            )
        )
        # uvicorn would otherwise replace our SIGINT/SIGTERM handlers
        server.install_signal_handlers = lambda: None  # type: ignore[method-assign]
        server_task = asyncio.create_task(server.serve(), name="status-api")
        logger.info("Status API listening on %s:%d", settings.status_host, settings.status_port)

    try:
        await controller.run()
    finally:
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task


async def run_subscriptions(settings: PilotSettings, args: argparse.Namespace) -> int:
    store = build_store(settings, build_control_client(settings))

    if args.action == "list":
        index = store.entries()
        if not index.subscriptions:
            print("No subscriptions found.")
            return 0
        for sub in index.subscriptions:
            marker = "*" if sub.name == index.active else " "
            updated = sub.updated_at.isoformat() if sub.updated_at else "never"
            print(f"{marker} {sub.name} ({sub.url}) - updated: {updated}")
        return 0

    if args.action == "add":
        await store.add(args.name, args.url)
    elif args.action == "remove":
        await store.remove(args.name)
    elif args.action == "use":
        await store.use(args.name)
    elif args.action == "refresh":
        names = [args.name] if args.name else [ref.name for ref in store.list()]
        failures = 0
        for name in names:
            try:
                await store.refresh(name)
            except PilotError as exc:
                failures += 1
                logger.error("Refresh of %s failed: %s", name, exc, extra={"subscription": name})
        return 1 if failures else 0
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-pilot",
        description="Latency monitoring and tiered failover for a local proxy engine.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Start the failover pilot in the foreground")
    run.add_argument("--group", help="Proxy group to manage (default: Proxy)")
    run.add_argument("--status-port", type=int, help="Serve the status API on this port")
    run.add_argument("--log-file", type=Path, help="Append log entries to this file")

    subs = commands.add_parser("subscriptions", help="Manage subscriptions")
    actions = subs.add_subparsers(dest="action", required=True)
    actions.add_parser("list", help="List subscriptions")
    add = actions.add_parser("add", help="Add a subscription")
    add.add_argument("name")
    add.add_argument("url")
    refresh = actions.add_parser("refresh", help="Refresh one or all subscriptions")
    refresh.add_argument("name", nargs="?")
    remove = actions.add_parser("remove", help="Remove a subscription")
    remove.add_argument("name")
    use = actions.add_parser("use", help="Activate a subscription")
    use.add_argument("name")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides: dict = {}
    if args.command == "run":
        if args.group:
            overrides["group_name"] = args.group
        if args.status_port is not None:
            overrides["status_port"] = args.status_port
        if args.log_file is not None:
            overrides["log_file"] = args.log_file
    settings = PilotSettings(**overrides)
    configure_logging(settings.log_level, settings.log_file)

    if args.command == "subscriptions":
        try:
            return asyncio.run(run_subscriptions(settings, args))
        except PilotError as exc:
            logger.error("%s", exc.message)
            return 1

    lock = InstanceLock(settings.lock_file, settings.pid_file)
    try:
        lock.acquire()
    except AlreadyRunningError as exc:
        logger.error("%s", exc.message)
        return 1

    try:
        asyncio.run(run_pilot(settings))
    finally:
        lock.release()
    return 0


if __name__ == "__main__":
    sys.exit(main())

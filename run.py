from __future__ import annotations

"""Main entry point driving one key pool from the command line."""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from alerts.router import NotificationService
from core.config_loader import AppConfig, load_config
from core.coordinator import PoolCoordinator
from core.event_bus import EventBus
from storage.pool_store import JsonPoolStore

LOGGER = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="API key pool with automatic failover")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--env", type=Path, default=None, help="Path to .env")
    parser.add_argument("--once", action="store_true", help="Refresh every key and endpoint once")
    parser.add_argument("--loop", action="store_true", help="Monitor the active key periodically")
    parser.add_argument("--interval", type=float, default=None, help="Refresh interval in seconds")
    parser.add_argument("--add-keys", type=Path, default=None, help="Import keys from a file, one per line")
    parser.add_argument(
        "--strategy",
        choices=["manual", "round_robin", "use_lowest", "use_highest"],
        default=None,
        help="Set the switch strategy before running",
    )
    parser.add_argument("--test-notifiers", action="store_true", help="Run a self-test on every notifier")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_coordinator(config: AppConfig) -> tuple[PoolCoordinator, NotificationService]:
    event_bus = EventBus()
    notifications = NotificationService(event_bus=event_bus, config=config.notifiers)
    store = JsonPoolStore(config.storage.path)
    coordinator = PoolCoordinator.from_config(config, store=store, event_bus=event_bus)
    return coordinator, notifications


async def run_once(coordinator: PoolCoordinator, notifications: NotificationService) -> None:
    report = await coordinator.refresh_all()
    await notifications.drain()
    for credential_id, error in report.errors.items():
        LOGGER.warning("Probe failed for %s: %s", credential_id, error)
    print(json.dumps(coordinator.snapshot(mask_secrets=True), ensure_ascii=False, indent=2))


async def loop_forever(
    coordinator: PoolCoordinator, notifications: NotificationService, interval: Optional[float]
) -> None:
    await coordinator.refresh_all()
    coordinator.start(interval)
    LOGGER.info(
        "Monitoring pool %s every %.0fs (strategy=%s)",
        coordinator.pool_id,
        coordinator.refresh_interval,
        coordinator.strategy.value,
    )
    try:
        await asyncio.Event().wait()
    finally:
        await coordinator.stop()
        await notifications.drain()


async def self_test_notifiers(notifications: NotificationService) -> None:
    for name, notifier in notifications.notifiers.items():
        result = await notifier.self_test()
        status = "ok" if result.ok else "failed"
        print(f"{name}: {status} ({result.detail})")


def run_async(entry: Callable[[], Awaitable[None]]) -> None:
    try:
        asyncio.run(entry())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.verbose)
    if args.once and args.loop:
        raise SystemExit("--once and --loop cannot be combined")

    config = load_config(config_path=args.config, env_path=args.env)
    coordinator, notifications = build_coordinator(config)

    if args.add_keys is not None:
        result = coordinator.add_credentials(args.add_keys.read_text(encoding="utf-8"))
        LOGGER.info("Imported %s keys, %s failed", result.success, result.failed)
        for error in result.errors:
            LOGGER.warning(error)
    if args.strategy:
        coordinator.set_strategy(args.strategy)

    if args.test_notifiers:
        run_async(lambda: self_test_notifiers(notifications))
    if args.once:
        run_async(lambda: run_once(coordinator, notifications))
    elif args.loop:
        run_async(lambda: loop_forever(coordinator, notifications, args.interval))
    elif args.add_keys is None and not args.strategy and not args.test_notifiers:
        raise SystemExit("Specify --once, --loop, --add-keys, --strategy or --test-notifiers")


if __name__ == "__main__":
    main()

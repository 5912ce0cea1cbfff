"""Command-line entry point for the plugin updater."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from plugin_updater import __version__
from plugin_updater.config import Settings, get_settings
from plugin_updater.errors import SelfUpdateExecFailedError, UpdaterError
from plugin_updater.logging import get_logger, setup_logging
from plugin_updater.selfupdate import SelfUpdater
from plugin_updater.updater import PluginUpdater, UpdateStatus

log = get_logger("plugin_updater.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plugin-updater",
        description="Signed plugin checkout and agent self-update",
    )
    parser.add_argument("--version", action="version", version=f"plugin-updater {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update", help="Fetch, verify and check out a plugin revision")
    update.add_argument("--revision", default=None, help="Target revision (default: configured)")

    subparsers.add_parser("version", help="Print the checked-out plugin commit")
    subparsers.add_parser("reset", help="Discard local changes in the plugin checkout")
    subparsers.add_parser("self-update", help="Replace the agent binary from the checkout")

    daemon = subparsers.add_parser("daemon", help="Update periodically, then self-update")
    daemon.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between update attempts (default: configured)",
    )
    return parser


async def update_once(
    updater: PluginUpdater,
    self_updater: SelfUpdater,
    settings: Settings,
    revision: str | None = None,
) -> bool:
    """Run one plugin update and, when it succeeds, a self-update check."""
    result = await updater.update_plugin(revision)
    print(json.dumps(result.to_dict()), flush=True)
    if result.status is not UpdateStatus.SUCCESS:
        return result.status in (UpdateStatus.IN_FLIGHT, UpdateStatus.TOO_RECENT)
    if self_updater.enabled:
        outcome = self_updater.try_self_update(settings)
        log.info("self_update_checked", outcome=outcome.value)
    return True


async def run_daemon(
    updater: PluginUpdater,
    self_updater: SelfUpdater,
    settings: Settings,
    interval: float,
) -> None:
    """Attempt an update every *interval* seconds until cancelled."""
    log.info("plugin_updater_daemon_started", interval=interval)
    while True:
        try:
            await update_once(updater, self_updater, settings)
        except SelfUpdateExecFailedError:
            raise
        except UpdaterError as exc:
            log.error("plugin_update_cycle_failed", error_kind=type(exc).__name__, error=str(exc))
        await asyncio.sleep(interval)


async def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()
    settings = get_settings()

    updater = PluginUpdater.from_settings(settings)
    self_updater = SelfUpdater.from_settings(settings)

    try:
        if args.command == "update":
            ok = await update_once(updater, self_updater, settings, args.revision)
            return 0 if ok else 1
        if args.command == "version":
            print(await updater.current_version())
            return 0
        if args.command == "reset":
            await updater.force_reset()
            return 0
        if args.command == "self-update":
            outcome = SelfUpdater(enabled=True).try_self_update(settings)
            print(outcome.value)
            return 0
        interval = args.interval or settings.update_interval_seconds
        await run_daemon(updater, self_updater, settings, interval)
        return 0
    except SelfUpdateExecFailedError as exc:
        log.critical("self_update_exec_failed", error=str(exc))
        return 1
    except UpdaterError as exc:
        log.error("plugin_updater_command_failed", command=args.command, error=str(exc))
        return 1


def run() -> None:
    """Run the application."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()

"""agentviz monitor daemon: command-line entry point.

Usage:
  agentviz-monitor
  agentviz-monitor --mode correlated --metadata-dir ~/.local/share/copilot-agent/metadata
  agentviz-monitor --backfill-only
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from agentviz import config
from agentviz.db.errors import EventStoreError
from agentviz.db.event_store import EventStore
from agentviz.observability import initialize as initialize_observability, shutdown as shutdown_observability
from agentviz.services.monitor import MODES, MonitorDaemon

logger = logging.getLogger("agentviz")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentviz-monitor",
        description="Record coding-assistant session activity into a SQLite event store.",
    )
    parser.add_argument("--db-path", type=Path, default=config.DB_PATH, help="Event store database file")
    parser.add_argument("--log-dir", type=Path, default=config.ASSISTANT_LOG_DIR, help="Assistant session log directory")
    parser.add_argument("--metadata-dir", type=Path, default=config.METADATA_DIR, help="Launcher metadata directory")
    parser.add_argument("--mode", choices=MODES, default=config.MONITOR_MODE, help="Session discovery mode")
    parser.add_argument("--backfill-only", action="store_true", help="Ingest existing files and exit")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: %(default)s)")
    return parser


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Platforms without loop signal support fall back to KeyboardInterrupt.
            logger.debug("Signal handlers unavailable for %s", sig)


async def _run(args: argparse.Namespace) -> int:
    initialize_observability()
    try:
        store = await EventStore.open(args.db_path)
    except EventStoreError as exc:
        logger.error("%s", exc)
        shutdown_observability()
        return 1

    daemon = MonitorDaemon(
        store,
        log_dir=args.log_dir,
        metadata_dir=args.metadata_dir,
        mode=args.mode,
    )
    try:
        if args.backfill_only:
            await daemon.backfill()
            logger.info("Backfill complete: %d events stored", await store.count_events())
            return 0

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        try:
            await daemon.start()
        except FileNotFoundError as exc:
            logger.error("%s", exc)
            return 1

        logger.info("agentviz monitor running (db=%s)", args.db_path)
        await stop_event.wait()
        logger.info("Shutdown requested")
        return 0
    finally:
        await daemon.stop()
        await store.close()
        shutdown_observability()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())

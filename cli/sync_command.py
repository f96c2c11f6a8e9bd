"""CLI for running reconciliation passes of the kiosk media mirror."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING

from mirror.config import Settings
from mirror.drive.google_drive import create_drive_client
from mirror.exceptions import SyncError
from mirror.services.manifest_service import ManifestStore
from mirror.services.sync_service import SyncEngine, SyncReport

if TYPE_CHECKING:
    from mirror.drive.base import RemoteDirectoryClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_CONFIG = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)


def print_report(report: SyncReport) -> None:
    """Print a human-readable summary of a pass."""
    print(f"Sync {report.status}:")
    for name in report.downloaded:
        print(f"  Download: {name}")
    for name in report.deleted:
        print(f"  Delete local: {name}")
    for event in report.events:
        print(f"  Warning ({event.kind}): {event.name}: {event.detail}")
    print(
        f"{len(report.downloaded)} downloaded, {len(report.kept)} unchanged, "
        f"{len(report.deleted)} deleted, {len(report.events)} problem(s)."
    )


async def run_once(engine: SyncEngine) -> int:
    """Run one pass and map its outcome to an exit code."""
    try:
        report = await engine.run_pass()
    except SyncError as exc:
        print(f"Error: sync aborted: {exc}")
        return EXIT_ABORTED
    print_report(report)
    return EXIT_OK


async def run_watch(engine: SyncEngine, interval_seconds: float) -> int:
    """Run passes every ``interval_seconds`` until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    while not stop.is_set():
        pass_task = asyncio.create_task(run_once(engine))
        stop_task = asyncio.create_task(stop.wait())
        done, _ = await asyncio.wait({pass_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if pass_task not in done:
            # Shutdown requested mid-pass: abort in-flight downloads.
            pass_task.cancel()
            with suppress(asyncio.CancelledError):
                await pass_task
            break
        stop_task.cancel()
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
    logger.info("Sync watcher stopped")
    return EXIT_OK


async def _main_async(
    settings: Settings, client: RemoteDirectoryClient, watch: float | None
) -> int:
    engine = SyncEngine.from_settings(settings, client, ManifestStore(settings.manifest_path))
    try:
        if watch:
            return await run_watch(engine, watch)
        return await run_once(engine)
    finally:
        await client.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kiosk-sync",
        description="Mirror the remote playlist folder into the local media directory",
    )
    parser.add_argument("--folder", "-f", help="Remote folder id (default: DRIVE_FOLDER_ID)")
    parser.add_argument("--media-dir", "-d", help="Local media directory (default: MEDIA_DIR)")
    parser.add_argument("--manifest", "-m", help="Manifest path (default: MANIFEST_PATH)")
    parser.add_argument(
        "--watch",
        type=float,
        metavar="SECONDS",
        help="Keep running, one pass every SECONDS",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    overrides: dict[str, object] = {}
    if args.folder:
        overrides["drive_folder_id"] = args.folder
    if args.media_dir:
        overrides["media_dir"] = Path(args.media_dir)
    if args.manifest:
        overrides["manifest_path"] = Path(args.manifest)
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if not settings.drive_folder_id:
        print("Error: no remote folder configured. Set DRIVE_FOLDER_ID or pass --folder.")
        return EXIT_CONFIG
    if args.watch is not None and args.watch <= 0:
        print("Error: --watch must be a positive number of seconds")
        return EXIT_CONFIG
    try:
        client = create_drive_client(settings)
    except (ValueError, OSError) as exc:
        print(f"Error: {exc}")
        return EXIT_CONFIG

    return asyncio.run(_main_async(settings, client, args.watch))


if __name__ == "__main__":
    sys.exit(main())

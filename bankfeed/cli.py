"""CLI entry point for bankfeed.

Commands:
    bankfeed import FILE... --owner ID   Import statement file(s)
    bankfeed watch --owner ID [--dir D]  Start drop-folder watcher daemon
    bankfeed status --owner ID           Transaction counts, recent imports, 30-day totals
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on BANKFEED_LOG_LEVEL env var."""
    level = os.environ.get("BANKFEED_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load application config from config directory."""
    from bankfeed.config import Config

    config_dir = os.environ.get("BANKFEED_CONFIG_DIR", "config")
    return Config(config_dir=config_dir)


def _get_repo():
    """Create a migrated Repository connected to the configured database."""
    from bankfeed.database.repository import Repository

    db_path = os.environ.get("BANKFEED_DB_PATH", "bankfeed.db")
    repo = Repository(db_path=db_path)
    repo.apply_migrations()
    return repo


def _get_watch_dir() -> Path:
    """Get the watch directory from env or default."""
    return Path(os.environ.get("BANKFEED_WATCH_DIR", "import"))


def _build_pipeline(config, repo, bus=None, state=None):
    from bankfeed.database.store import SqliteTransactionStore
    from bankfeed.parsers.processor import FormatProcessor
    from bankfeed.pipeline import ImportPipeline

    processor = FormatProcessor(
        column_aliases=config.column_aliases,
        fallback_encodings=config.fallback_encodings,
    )
    store = SqliteTransactionStore(repo)
    return ImportPipeline(store, bus=bus, processor=processor, state=state)


def _print_report(report) -> None:
    status = "ok" if report.success else "error"
    print(
        f"  {report.file_name}: {status}"
        f" (new={report.processed}, dup={report.duplicates},"
        f" skipped={report.skipped}, failed={report.failed})"
    )
    for warning in report.warnings:
        print(f"    warning: {warning}")
    for error in report.errors:
        print(f"    error: {error}")


# ── Command handlers ─────────────────────────────────────


def cmd_import(args: argparse.Namespace) -> int:
    """Import statement file(s) via the ImportPipeline."""
    from bankfeed.database.store import StoreUnavailableError

    files = []
    for path in args.files:
        filepath = path.resolve()
        if not filepath.is_file():
            print(f"Error: File not found: {filepath}")
            return 1
        files.append((filepath.name, filepath.read_bytes()))

    config = _get_config()
    repo = _get_repo()
    pipeline = _build_pipeline(config, repo)
    try:
        reports = asyncio.run(pipeline.process_files(files, args.owner))
    except StoreUnavailableError as e:
        print(f"Error: database unavailable: {e}")
        return 1
    finally:
        repo.close()

    if args.json:
        print(json.dumps([r.to_dict() for r in reports], indent=2))
    else:
        for report in reports:
            _print_report(report)
        total_new = sum(r.processed for r in reports)
        total_dup = sum(r.duplicates for r in reports)
        errors = sum(1 for r in reports if r.errors)
        print(f"\nProcessed {len(reports)} file(s): {total_new} new, "
              f"{total_dup} duplicates, {errors} with errors")
    return 1 if any(r.errors for r in reports) else 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Start the file watcher daemon with debounced dashboard refresh."""
    from bankfeed.dashboard.refresh import RefreshCoordinator
    from bankfeed.dashboard.state import AppState
    from bankfeed.events import SignalBus
    from bankfeed.watcher.observer import FileWatcher

    config = _get_config()
    repo = _get_repo()
    bus = SignalBus()
    state = AppState()
    pipeline = _build_pipeline(config, repo, bus=bus, state=state)
    watcher_cfg = config.watcher

    watcher = FileWatcher(
        watch_dir=args.dir or _get_watch_dir(),
        pipeline=pipeline,
        owner=args.owner,
        stability_seconds=watcher_cfg.get("stability_seconds", 10),
        check_interval=watcher_cfg.get("check_interval", 2.0),
        poll_interval=watcher_cfg.get("poll_interval", 30),
    )

    def reset_insights() -> None:
        logger.info("Insights reset for %s", args.owner)

    async def run() -> None:
        coordinator = RefreshCoordinator(
            bus,
            on_refresh=lambda: state.refresh(pipeline.store, args.owner),
            on_reset_insights=reset_insights,
            settings=config.refresh_settings,
        )
        coordinator.start()
        watcher.start()
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            coordinator.close()

    print(f"Watching {watcher.watch_dir} for statement files... (Ctrl+C to stop)")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\nStopping watcher...")
    finally:
        watcher.stop()
        repo.close()

    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Display transaction counts, recent imports and 30-day totals."""
    from bankfeed.dashboard.state import AppState

    repo = _get_repo()
    try:
        state = AppState()
        today = date.today()
        since = (today - timedelta(days=state.window_days)).isoformat()
        state.merge_recent(repo.get_transactions_for_owner(args.owner, limit=100))
        agg = state.recompute(repo.get_transactions_for_owner(args.owner, since=since), today)
        total = repo.count_transactions(args.owner)
        imports = repo.get_imports_for_owner(args.owner, limit=5)
    finally:
        repo.close()

    print(f"bankfeed status for {args.owner}")
    print("=" * 40)
    print(f"  Total transactions:  {total:,}")
    print(f"  Income (30 days):    {agg.monthly_income:,.2f}")
    print(f"  Expenses (30 days):  {agg.monthly_expenses:,.2f}")
    print(f"  Net (30 days):       {agg.total_balance:,.2f}")
    if imports:
        print("\n  Recent imports:")
        for imp in imports:
            print(f"    {imp.created_at[:19]}  {imp.file_name}  {imp.status}"
                  f"  ({imp.record_count or 0} new)")
    return 0


_COMMANDS = {
    "import": cmd_import,
    "watch": cmd_watch,
    "status": cmd_status,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="bankfeed",
        description="Bank statement ingestion for NZ bank exports",
    )
    subparsers = parser.add_subparsers(dest="command")

    # import
    import_p = subparsers.add_parser("import", help="Import statement file(s)")
    import_p.add_argument("files", type=Path, nargs="+", help="CSV or JSON export(s)")
    import_p.add_argument("--owner", required=True, help="Owner of the transactions")
    import_p.add_argument("--json", action="store_true", help="Print reports as JSON")

    # watch
    watch_p = subparsers.add_parser("watch", help="Start file watcher daemon")
    watch_p.add_argument("--owner", required=True, help="Owner of the transactions")
    watch_p.add_argument("--dir", type=Path, help="Drop folder (default: BANKFEED_WATCH_DIR)")

    # status
    status_p = subparsers.add_parser("status", help="Show counts, recent imports, 30-day totals")
    status_p.add_argument("--owner", required=True, help="Owner of the transactions")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Album Organizer - Command Line Interface

Organizes a collection of album directories into a quality-tiered layout,
with an audit trail that supports history, review and undo.
"""

import argparse
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .. import __version__
from ..core.config_manager import ConfigManager, OrganizerConfig
from ..core.exceptions import ConfigurationInvalid, OrganizerError
from ..core.models import AlbumStatus, MoveRecord, OrganizationMode, RunSummary
from ..core.organizer import AlbumOrganizer
from ..core.relocation import RelocationExecutor
from ..core.state_store import StateStore
from ..utils.error_handler import handle_user_error

DEFAULT_LOG_LEVEL = "WARNING"

_log_handlers: List[logging.Handler] = []

_ATTENTION_STATUSES = (AlbumStatus.MANUAL_REVIEW, AlbumStatus.DUPLICATE_FLAGGED, AlbumStatus.FAILED)

_STATUS_STYLES = {
    AlbumStatus.MOVED.value: "green",
    AlbumStatus.CLASSIFIED.value: "cyan",
    AlbumStatus.DUPLICATE_FLAGGED.value: "yellow",
    AlbumStatus.MANUAL_REVIEW.value: "magenta",
    AlbumStatus.FAILED.value: "red",
}


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Setup logging configuration; log records go to stderr and the log file only."""
    level = getattr(logging, log_level.upper())

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    for handler in _log_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _log_handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    _log_handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        _log_handlers.append(file_handler)

    root_logger.setLevel(level)
    for handler in _log_handlers:
        root_logger.addHandler(handler)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="album-organizer",
        description="Organize album directories into a canonical, quality-tiered layout",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Album Organizer v{__version__}"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: ui.log_level from the config, WARNING)"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Also write log records to this file"
    )

    # Options shared by every command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-c", "--config",
        type=str,
        help="Configuration file path (JSON format)"
    )
    common.add_argument(
        "--db",
        type=str,
        help="State database path"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    organize = subparsers.add_parser(
        "organize", parents=[common],
        help="Classify and move albums from SOURCE into DEST"
    )
    organize.add_argument("source", help="Collection root to organize")
    organize.add_argument("destination", help="Root of the organized library")
    organize.add_argument(
        "--dry-run",
        action="store_true",
        help="Record intended moves without touching the filesystem"
    )
    organize.add_argument(
        "--workers",
        type=int,
        help="Number of parallel workers (default: derived from CPU count)"
    )
    organize.add_argument(
        "--mode",
        choices=[mode.value for mode in OrganizationMode],
        help="Destination layout (default: artist)"
    )
    organize.add_argument(
        "--threshold",
        type=int,
        help="Manual review confidence threshold (0-100)"
    )
    organize.add_argument(
        "--incremental",
        action="store_true",
        help="Skip directories unchanged since their last recorded outcome"
    )
    organize.add_argument(
        "--since",
        metavar="DATE",
        help="Only process directories modified on or after DATE (YYYY-MM-DD)"
    )

    history = subparsers.add_parser(
        "history", parents=[common],
        help="Show the move audit trail"
    )
    history.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Number of records to show (default: 50)"
    )
    history.add_argument(
        "--run",
        type=str,
        help="Only show records of this run id"
    )
    history.add_argument(
        "--moves-only",
        action="store_true",
        help="Hide review, duplicate and failure outcomes of albums that were never moved"
    )

    undo = subparsers.add_parser(
        "undo", parents=[common],
        help="Move a committed album back to its source path"
    )
    undo.add_argument("move_id", type=int, help="Id of a Committed move (see 'history')")

    subparsers.add_parser(
        "review", parents=[common],
        help="List albums waiting for manual review or flagged as duplicates"
    )

    return parser


def validate_arguments(args: argparse.Namespace) -> bool:
    """Validate command line arguments."""
    if args.command == "organize":
        if args.workers is not None and args.workers < 1:
            print("Error: --workers must be at least 1", file=sys.stderr)
            return False
        if args.threshold is not None and not 0 <= args.threshold <= 100:
            print("Error: --threshold must be between 0 and 100", file=sys.stderr)
            return False
    if args.command == "history" and args.limit < 1:
        print("Error: --limit must be at least 1", file=sys.stderr)
        return False
    return True


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {'paths': {'state_db': args.db}}
    if args.command == "organize":
        overrides['paths'].update(source_root=args.source, destination_root=args.destination)
        overrides['processing'] = {
            'max_workers': args.workers,
            'incremental': True if args.incremental else None,
            'since': args.since,
        }
        overrides['organization'] = {'mode': args.mode}
        overrides['classification'] = {'manual_review_threshold': args.threshold}
        overrides['dry_run'] = True if args.dry_run else None
    return overrides


def _apply_ui_config(args: argparse.Namespace, config: OrganizerConfig) -> None:
    """Config file logging settings apply where the command line gave none"""
    level = args.log_level or config.ui.log_level
    log_file = args.log_file or config.ui.log_file
    if (level.upper(), log_file) != (args.log_level or DEFAULT_LOG_LEVEL, args.log_file):
        setup_logging(level, log_file)


def _open_store(config: OrganizerConfig) -> StateStore:
    return StateStore(
        config.paths.state_db,
        max_attempts=config.store.max_attempts,
        base_delay=config.store.base_delay,
        max_delay=config.store.max_delay,
        busy_timeout=config.store.busy_timeout,
    )


def run_organize_command(args: argparse.Namespace, config_manager: ConfigManager,
                         console: Console) -> int:
    """Run organize command - classify and relocate every album."""
    config = config_manager.load_validated(args.config, _cli_overrides(args))
    _apply_ui_config(args, config)

    organizer = AlbumOrganizer(config)
    interrupted = []

    def handle_signal(signum, frame):
        if interrupted:
            raise KeyboardInterrupt
        interrupted.append(signum)
        console.print("\n⚠️  Stopping after in-flight albums finish (press Ctrl+C again to abort)")
        organizer.request_stop()

    previous_handlers = {
        signum: signal.signal(signum, handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        mode = "[DRY RUN] " if config.dry_run else ""
        console.print(f"🎵 {mode}Organizing {config.paths.source_root} -> {config.paths.destination_root}")
        summary = organizer.run()
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    _display_run_summary(summary, console)

    if interrupted:
        return 130
    return 1 if summary.count(AlbumStatus.FAILED) else 0


def run_history_command(args: argparse.Namespace, config_manager: ConfigManager,
                        console: Console) -> int:
    """Run history command - show recent move records."""
    config = config_manager.load_config(args.config, _cli_overrides(args))
    _apply_ui_config(args, config)
    store = _open_store(config)

    moves = store.move_history(limit=args.limit, run_id=args.run, moves_only=args.moves_only)
    if not moves:
        console.print("No moves recorded yet.")
        return 0

    table = Table(title="Move history")
    table.add_column("ID", justify="right")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Detail")
    for move in moves:
        status = _history_status(move) + (" (dry run)" if move.dry_run else "")
        table.add_row(str(move.id), status, move.source_path,
                      move.destination_path or "-", move.detail or "")
    console.print(table)
    return 0


def _history_status(move: MoveRecord) -> str:
    if move.is_relocation:
        return move.status.value
    label = f"Not moved ({move.outcome})"
    style = _STATUS_STYLES.get(move.outcome)
    return f"[{style}]{label}[/{style}]" if style else label


def run_undo_command(args: argparse.Namespace, config_manager: ConfigManager,
                     console: Console) -> int:
    """Run undo command - reverse one committed move."""
    config = config_manager.load_config(args.config, _cli_overrides(args))
    _apply_ui_config(args, config)
    store = _open_store(config)

    executor = RelocationExecutor(
        store,
        destination_root=config.paths.destination_root or None,
        source_root=config.paths.source_root or None,
        cleanup_max_levels=config.organization.cleanup_max_levels,
    )
    move = executor.undo(args.move_id)
    console.print(f"↩️  Move #{args.move_id} undone: {move.source_path} -> {move.destination_path}")
    return 0


def run_review_command(args: argparse.Namespace, config_manager: ConfigManager,
                       console: Console) -> int:
    """Run review command - list albums that need a human decision."""
    config = config_manager.load_config(args.config, _cli_overrides(args))
    _apply_ui_config(args, config)
    store = _open_store(config)

    albums = store.albums_by_status(AlbumStatus.MANUAL_REVIEW, AlbumStatus.DUPLICATE_FLAGGED)
    if not albums:
        console.print("✅ Nothing to review.")
        return 0

    table = Table(title="Albums to review")
    table.add_column("ID", justify="right")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Artist")
    table.add_column("Title")
    table.add_column("Confidence", justify="right")
    for album in albums:
        style = _STATUS_STYLES.get(album['status'], "")
        table.add_row(str(album['id']), f"[{style}]{album['status']}[/{style}]",
                      album['source_path'], album['artist'], album['title'],
                      str(album['confidence']))
    console.print(table)
    return 0


def _display_run_summary(summary: RunSummary, console: Console) -> None:
    counts = Table(title=f"Run {summary.run_id}" + (" (dry run)" if summary.dry_run else ""))
    counts.add_column("Outcome")
    counts.add_column("Albums", justify="right")
    for status, count in summary.counts().items():
        if count:
            style = _STATUS_STYLES.get(status, "")
            counts.add_row(f"[{style}]{status}[/{style}]", str(count))
    console.print(counts)

    attention = [result for result in summary.results if result.status in _ATTENTION_STATUSES]
    if attention:
        table = Table(title="Needs attention")
        table.add_column("Source")
        table.add_column("Outcome")
        table.add_column("Reason")
        for result in attention:
            reason = result.error or (result.duplicate.value if result.duplicate else "")
            table.add_row(result.source_path, result.status.value, reason)
        console.print(table)

    if summary.dry_run:
        planned = [result for result in summary.results if result.destination_path]
        for result in planned:
            console.print(f"  {result.source_path} -> {result.destination_path}")

    if summary.skipped_directories:
        console.print(f"⏭️  Skipped {summary.skipped_directories} directories (unchanged or older than --since)")
    if summary.recovered_moves:
        console.print(f"🔁 Recovered {summary.recovered_moves} interrupted moves")
    if summary.removed_directories:
        console.print(f"🧹 Removed {len(summary.removed_directories)} empty directories")
    if summary.stopped_early:
        console.print("⚠️  Run stopped early; re-run to process the remaining albums")
    console.print(f"⏱️  Duration: {summary.duration:.2f} seconds")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level or DEFAULT_LOG_LEVEL, args.log_file)
    logger = logging.getLogger(__name__)

    if not validate_arguments(args):
        return 1

    logger.info(f"Album Organizer v{__version__} starting ({args.command})")
    console = Console()
    config_manager = ConfigManager()

    handlers = {
        "organize": run_organize_command,
        "history": run_history_command,
        "undo": run_undo_command,
        "review": run_review_command,
    }

    try:
        return handlers[args.command](args, config_manager, console)
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user", file=sys.stderr)
        return 130
    except (ConfigurationInvalid, OrganizerError, OSError) as e:
        print(handle_user_error(e, verbose=args.log_level == "DEBUG"), file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("Unexpected error occurred")
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

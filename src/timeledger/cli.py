"""Command-line interface for timeledger.

CONCEPTS:
---------
- SUBJECT: Anything being timed, named by an id (e.g. "task-42").
- EVENT:   start, pause, resume or finish, recorded against a subject.
- SWEEP:   Pause every subject that is currently running.
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import NoReturn

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from timeledger import __version__
from timeledger.config import Settings, settings
from timeledger.errors import EventTrackerError, NotTracked
from timeledger.store import DirectoryStorageArea, JsonEventStore, SqliteEventStore
from timeledger.store.base import EventStore
from timeledger.tracker import EventTracker
from timeledger.types import DurationBreakdown, EventType

console = Console()


def setup_logging(verbose: bool = False, level: str | None = None) -> None:
    """Configure logging."""
    log_level = logging.DEBUG if verbose else getattr(logging, (level or "WARNING").upper(), logging.WARNING)
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    logging.basicConfig(
        level=log_level,
        format=fmt,
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=verbose)],
    )


def make_store(config: Settings) -> EventStore:
    """Build the event store selected by the settings."""
    path = config.get_database_path()
    if config.store_backend == "sqlite":
        return SqliteEventStore(path)
    return JsonEventStore(path)


async def open_tracker(config: Settings | None = None) -> EventTracker:
    config = config or settings
    area = DirectoryStorageArea(config.get_data_dir())
    return await EventTracker.open(make_store(config), area, config)


def format_breakdown(value: DurationBreakdown) -> str:
    parts = []
    if value.days:
        parts.append(f"{value.days}d")
    if value.hours:
        parts.append(f"{value.hours}h")
    if value.minutes:
        parts.append(f"{value.minutes}m")
    if value.seconds or not parts:
        parts.append(f"{value.seconds}s")
    return " ".join(parts)


def run(operation: Callable[[EventTracker], Awaitable[None]]) -> None:
    """Open a tracker, run an operation, and exit 1 on ledger errors."""

    async def _run() -> None:
        tracker = await open_tracker()
        try:
            await operation(tracker)
        finally:
            await tracker.close()

    try:
        asyncio.run(_run())
    except EventTrackerError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def cmd_event(args: argparse.Namespace) -> None:
    """Record a start, pause, resume or finish event."""
    payload = None
    if args.payload:
        try:
            payload = json.loads(args.payload)
        except json.JSONDecodeError:
            console.print(f"[red]Invalid JSON payload:[/red] {args.payload}")
            sys.exit(1)

    async def _add(tracker: EventTracker) -> None:
        result = await tracker.add_event(args.id, args.command, time=args.time, payload=payload)
        console.print(f"[green]{args.command.capitalize()}:[/green] {result.id} at {result.time}")

    run(_add)


def cmd_events(args: argparse.Namespace) -> None:
    """List a subject's events."""

    async def _list(tracker: EventTracker) -> None:
        events = await tracker.get_events_by_id(args.id)
        if not events:
            console.print(f"[yellow]No events for {args.id}.[/yellow]")
            return

        table = Table(title=f"Events for {args.id}")
        table.add_column("Type", style="cyan")
        table.add_column("Time", style="blue")
        table.add_column("Payload", style="white")
        for event in events:
            payload = event.payload if isinstance(event.payload, str) else json.dumps(event.payload)
            table.add_row(event.type.value, event.time, payload)
        console.print(table)

    run(_list)


def cmd_status(args: argparse.Namespace) -> None:
    """Show a subject's time range and durations."""

    async def _status(tracker: EventTracker) -> None:
        try:
            elapsed = await tracker.get_elapsed_time_by_id(args.id)
        except NotTracked:
            console.print(f"[yellow]{args.id} is not tracked.[/yellow]")
            return
        stopped = await tracker.get_stopped_time(args.id)
        net = await tracker.get_net_tracking_time(args.id)
        time_range = await tracker.get_time_range_by_id(args.id)
        last = await tracker.get_last_event_type_by_id(args.id)

        console.print(f"[bold]{args.id}[/bold] ({last.value if last else '-'})")
        console.print(f"  Started:  {time_range.start_time or '-'}")
        console.print(f"  Finished: {time_range.finish_time or '-'}")
        console.print(f"  Elapsed:  {format_breakdown(elapsed)}")
        console.print(f"  Stopped:  {format_breakdown(stopped)}")
        console.print(f"  Net:      [green]{format_breakdown(net)}[/green]")

    run(_status)


def cmd_ids(args: argparse.Namespace) -> None:
    """List tracked subjects with their current state."""

    async def _ids(tracker: EventTracker) -> None:
        ids = await tracker.get_all_ids()
        if not ids:
            console.print("[yellow]No tracked subjects.[/yellow]")
            return

        table = Table(title="Tracked Subjects")
        table.add_column("ID", style="cyan")
        table.add_column("State", style="yellow")
        for event_id in ids:
            last = await tracker.get_last_event_type_by_id(event_id)
            table.add_row(event_id, last.value if last else "-")
        console.print(table)

    run(_ids)


def cmd_sweep(args: argparse.Namespace) -> None:
    """Pause every running subject."""

    async def _sweep(tracker: EventTracker) -> None:
        paused = await tracker.stop_events_in_background()
        if not paused:
            console.print("[yellow]Nothing to pause.[/yellow]")
            return
        for result in paused:
            console.print(f"[green]Paused:[/green] {result.id} at {result.time}")

    run(_sweep)


def cmd_reopen(args: argparse.Namespace) -> None:
    """Remove a subject's finish events."""

    async def _reopen(tracker: EventTracker) -> None:
        await tracker.remove_finish_by_id(args.id)
        console.print(f"[green]Reopened:[/green] {args.id}")

    run(_reopen)


def cmd_delete(args: argparse.Namespace) -> None:
    """Delete all events of a subject."""

    async def _delete(tracker: EventTracker) -> None:
        await tracker.delete_events_by_id(args.id)
        console.print(f"[green]Deleted:[/green] {args.id}")

    run(_delete)


def cmd_wipe(args: argparse.Namespace) -> None:
    """Delete every event and the storage folder."""
    if not args.yes:
        console.print("[yellow]This removes all tracked events. Re-run with --yes to confirm.[/yellow]")
        sys.exit(1)

    async def _wipe(tracker: EventTracker) -> None:
        await tracker.wipe_database()
        console.print(f"[green]Wiped:[/green] {settings.get_data_dir()}")

    run(_wipe)


def cmd_version(args: argparse.Namespace) -> None:
    """Show version information."""
    console.print(f"timeledger v{__version__}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timeledger", description="Time-tracking ledger")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed output")
    subparsers = parser.add_subparsers(dest="command")

    for event_type in EventType:
        sub = subparsers.add_parser(event_type.value, help=f"Record a {event_type.value} event")
        sub.add_argument("id", help="Subject id")
        sub.add_argument("--time", default=None, help="ISO-8601 UTC timestamp (default: now)")
        sub.add_argument("--payload", default=None, help="JSON object stored with the event")
        sub.set_defaults(func=cmd_event)

    sub = subparsers.add_parser("events", help="List a subject's events")
    sub.add_argument("id", help="Subject id")
    sub.set_defaults(func=cmd_events)

    sub = subparsers.add_parser("status", help="Show durations for a subject")
    sub.add_argument("id", help="Subject id")
    sub.set_defaults(func=cmd_status)

    sub = subparsers.add_parser("ids", help="List tracked subjects")
    sub.set_defaults(func=cmd_ids)

    sub = subparsers.add_parser("sweep", help="Pause every running subject")
    sub.set_defaults(func=cmd_sweep)

    sub = subparsers.add_parser("reopen", help="Remove a subject's finish events")
    sub.add_argument("id", help="Subject id")
    sub.set_defaults(func=cmd_reopen)

    sub = subparsers.add_parser("delete", help="Delete all events of a subject")
    sub.add_argument("id", help="Subject id")
    sub.set_defaults(func=cmd_delete)

    sub = subparsers.add_parser("wipe", help="Delete every event and the storage folder")
    sub.add_argument("--yes", action="store_true", help="Confirm")
    sub.set_defaults(func=cmd_wipe)

    sub = subparsers.add_parser("version", help="Show version information")
    sub.set_defaults(func=cmd_version)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the timeledger CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, level=settings.log_level)

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(0)

    args.func(args)
    sys.exit(0)


if __name__ == "__main__":
    main()

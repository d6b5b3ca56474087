import asyncio
import datetime
import logging
import os
import signal
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from station_sync.config import ENV_PREFIX, RemoteConfig, SyncConfig
from station_sync.database import StationDatabase
from station_sync.db import verify_integrity
from station_sync.journal import MutationQueue
from station_sync.metrics import HealthChecker, configure_logging, get_registry
from station_sync.replayer import NO_CONNECTION, SyncReport
from station_sync.state import StateChange
from station_sync.stores.local import LocalStore

app = typer.Typer(help="Station sync core CLI")
console = Console()
logger = logging.getLogger("station_sync.cli")

DB_OPTION = typer.Option(..., "--db", envvar=f"{ENV_PREFIX}DB", help="Path to the local SQLite database")
DSN_OPTION = typer.Option(..., "--dsn", envvar=f"{ENV_PREFIX}DSN", help="Remote PostgreSQL DSN")
TIMEOUT_OPTION = typer.Option(5.0, "--timeout", help="Remote connect timeout in seconds")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
):
    """Offline-first sync between the station and the central database."""
    configure_logging(level=log_level, json_format=json_logs)


def build_database(db_path: str, dsn: str) -> StationDatabase:
    return StationDatabase.from_config(SyncConfig(local_path=db_path), RemoteConfig(dsn=dsn))


def _format_time(value: Optional[float]) -> str:
    if not value:
        return "never"
    return datetime.datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def _print_report(report: dict) -> None:
    if report.get("success"):
        console.print(
            f"[green]Sync finished: {report['synced']} synced, {report['failed']} failed[/green]"
        )
    else:
        console.print(f"[red]Sync did not run: {report.get('error', 'unknown error')}[/red]")

    errors = report.get("errors") or []
    if errors:
        table = Table(title="Failed Entries")
        table.add_column("Entry", style="dim")
        table.add_column("Table", style="cyan")
        table.add_column("Operation", style="magenta")
        table.add_column("Error", style="red")
        for err in errors:
            table.add_row(str(err["entry_id"]), err["table_name"], err["operation"], err["error"])
        console.print(table)


@app.command()
def status(
    db: str = DB_OPTION,
    dsn: Optional[str] = typer.Option(None, "--dsn", envvar=f"{ENV_PREFIX}DSN", help="Also probe this remote DSN"),
    timeout: float = TIMEOUT_OPTION,
):
    """Show connection and queue status."""
    online: Optional[bool] = None
    if dsn:
        async def _probe() -> bool:
            database = build_database(db, dsn)
            try:
                return await database.connect(timeout)
            finally:
                await database.close()

        online = asyncio.run(_probe())

    with LocalStore(db) as store:
        queue = MutationQueue(store)
        table = Table(title="Sync Status")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="magenta")

        table.add_row("Database", db)
        if online is None:
            table.add_row("Remote", "not checked")
        else:
            table.add_row("Remote", "[green]online[/green]" if online else "[red]offline[/red]")
        table.add_row("Pending", str(queue.pending_count()))
        table.add_row("Failed", str(queue.failed_count()))
        table.add_row("Synced (retained)", str(queue.synced_count()))

        console.print(table)


@app.command()
def queue(
    db: str = DB_OPTION,
    failed_only: bool = typer.Option(False, "--failed", help="Only show failed entries"),
):
    """List unsynced queue entries in replay order."""
    with LocalStore(db) as store:
        entries, broken = MutationQueue(store).scan_pending()
        if failed_only:
            entries = [e for e in entries if e.is_failed]
            broken = [b for b in broken if b.is_failed]

        if not entries and not broken:
            console.print("[green]Sync queue is empty.[/green]")
            return

        table = Table(title="Pending Mutations")
        table.add_column("ID", style="dim")
        table.add_column("Table", style="cyan")
        table.add_column("Operation", style="magenta")
        table.add_column("Queued At")
        table.add_column("Retries", style="yellow")
        table.add_column("Last Error", style="red")

        for entry in entries:
            table.add_row(
                str(entry.id),
                entry.table_name,
                entry.operation,
                _format_time(entry.created_at / 1000),
                str(entry.retry_count),
                entry.error or "-",
            )
        for bad in broken:
            table.add_row(
                str(bad.id),
                bad.table_name,
                bad.operation,
                _format_time(bad.created_at / 1000),
                str(bad.retry_count),
                f"undecodable: {bad.error}",
            )
        console.print(table)


@app.command()
def sync(db: str = DB_OPTION, dsn: str = DSN_OPTION, timeout: float = TIMEOUT_OPTION):
    """Run one sync pass against the remote store."""

    async def _sync() -> dict:
        database = build_database(db, dsn)
        try:
            if not await database.connect(timeout):
                return SyncReport(success=False, error=NO_CONNECTION).as_dict()
            return await database.manual_sync()
        finally:
            await database.close()

    report = asyncio.run(_sync())
    _print_report(report)
    if not report.get("success"):
        raise typer.Exit(code=1)


@app.command("retry-failed")
def retry_failed(db: str = DB_OPTION, dsn: str = DSN_OPTION, timeout: float = TIMEOUT_OPTION):
    """Reset failed entries and run a sync pass."""

    async def _retry() -> dict:
        database = build_database(db, dsn)
        try:
            if not await database.connect(timeout):
                return SyncReport(success=False, error=NO_CONNECTION).as_dict()
            return await database.retry_failed()
        finally:
            await database.close()

    report = asyncio.run(_retry())
    _print_report(report)
    if not report.get("success"):
        raise typer.Exit(code=1)


@app.command()
def reconcile(db: str = DB_OPTION, dsn: str = DSN_OPTION, timeout: float = TIMEOUT_OPTION):
    """Align the local schema with the remote one."""

    async def _reconcile():
        database = build_database(db, dsn)
        try:
            if not await database.connect(timeout):
                return None
            return await database.reconcile_schema()
        finally:
            await database.close()

    result = asyncio.run(_reconcile())
    if result is None:
        console.print(f"[red]{NO_CONNECTION}[/red]")
        raise typer.Exit(code=1)

    color = "green" if result.success else "yellow"
    console.print(
        f"[{color}]Reconciled {result.tables} tables, {result.changes} changes applied[/{color}]"
    )
    for err in result.errors:
        console.print(f"[red]  {err['table_name'] or '*'}: {err['error']}[/red]")
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def run(db: str = DB_OPTION, dsn: str = DSN_OPTION, timeout: float = TIMEOUT_OPTION):
    """Start the connection monitor until interrupted."""

    def on_connection(change: StateChange) -> None:
        console.print(f"Connection {change.status.value}: {change.reason}")

    def on_sync(report: SyncReport) -> None:
        if report.success:
            console.print(f"Synced {report.synced}, failed {report.failed}")

    async def _run() -> None:
        database = build_database(db, dsn)
        database.on_connection_change(on_connection)
        database.on_sync_complete(on_sync)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop.set))

        try:
            status = await database.initialize(timeout)
            console.print(
                "[green]Started online[/green]" if status["online"] else "[yellow]Started offline[/yellow]"
            )
            await database.start_monitor()
            console.print("[green]Monitor running. Press Ctrl+C to stop.[/green]")
            await stop.wait()
        finally:
            console.print("\n[yellow]Shutting down...[/yellow]")
            await database.close()

    asyncio.run(_run())


@app.command()
def health(
    db: str = DB_OPTION,
    memory_mb: int = typer.Option(1000, "--memory-mb", help="Memory threshold in MB"),
    show_metrics: bool = typer.Option(False, "--metrics", help="Also print in-process metrics"),
):
    """Check the local database, disk and memory."""
    with LocalStore(db) as store:
        checker = HealthChecker()
        checker.register_check("database", lambda: checker.check_database(store.connection))
        checker.register_check("integrity", lambda: {
            "healthy": verify_integrity(store.connection),
            "message": "PRAGMA integrity_check",
        })
        checker.register_check(
            "disk", lambda: checker.check_disk(os.path.dirname(os.path.abspath(db)))
        )
        checker.register_check("memory", lambda: checker.check_memory(memory_mb))
        result = checker.check_all()

    table = Table(title="Health")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Message")
    for name, check in result.checks.items():
        table.add_row(
            name,
            "[green]ok[/green]" if check.get("healthy") else "[red]failing[/red]",
            check.get("message", ""),
        )
    console.print(table)

    if show_metrics:
        console.print(get_registry().export_prometheus() or "(no metrics recorded)")

    if not result.healthy:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

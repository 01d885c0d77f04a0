#!/usr/bin/env python3
"""Break timer CLI.

Usage:
    break-timer serve --port 7788
    break-timer status
    break-timer settings
    break-timer set-threshold 45
"""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.table import Table

from .config import get_config, verbose_option
from .settings import SettingsManager
from .store import SqliteStore, StorageError
from .timer import TIMER_STATE_KEY, WORK_SESSION_KEY, TimerEngine, TimerStatus, format_duration
from .service import epoch_ms

console = Console()


async def _load_status(config) -> tuple[TimerStatus, str]:
    """Recover persisted state in memory, without writing anything back."""
    store = SqliteStore(config.db_path)
    records = await store.get_many([TIMER_STATE_KEY, WORK_SESSION_KEY])
    settings = SettingsManager(store)
    await settings.load(persist_defaults=False)
    now = epoch_ms()
    engine = TimerEngine(
        now_ms=now,
        inactivity_threshold_ms=config.inactivity_threshold_ms,
        stale_work_segment_ms=config.stale_work_segment_ms,
        max_break_elapsed_ms=config.max_break_elapsed_ms,
    )
    result = engine.restore(records, now)
    return engine.status(now, settings.work_threshold_ms()), result.action


async def _load_settings(config) -> SettingsManager:
    """Read settings; without a database the defaults are shown and no file is created."""
    settings = SettingsManager(SqliteStore(config.db_path))
    if config.db_path.exists():
        await settings.load(persist_defaults=False)
    return settings


async def _set_threshold(config, minutes: int) -> bool:
    store = SqliteStore(config.db_path)
    await store.init()
    settings = SettingsManager(store)
    await settings.load()
    return await settings.update_work_time_threshold(minutes)


@click.group()
@verbose_option
@click.pass_context
def cli(ctx, verbose):
    """Break timer - work/break tracking with restart recovery."""
    config = get_config()
    config.verbose = config.verbose or verbose
    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    if config.verbose:
        click.echo(f"Using database: {config.db_path}")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=None, help="Defaults to BREAK_TIMER_PORT")
@click.pass_context
def serve(ctx, host, port):
    """Run the timer API server."""
    import uvicorn

    from .api import create_app

    config = ctx.obj["config"]
    uvicorn.run(create_app(config), host=host, port=port or config.port)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the persisted timer state as it would be recovered now."""
    config = ctx.obj["config"]
    if not config.db_path.exists():
        raise click.ClickException(f"No timer database at {config.db_path}")
    try:
        timer_status, action = asyncio.run(_load_status(config))
    except StorageError as e:
        raise click.ClickException(str(e))

    table = Table(title="Break Timer")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Mode", timer_status.mode.value)
    table.add_row("Work time", format_duration(timer_status.current_work_ms))
    table.add_row("Threshold", format_duration(timer_status.work_threshold_ms))
    exceeded = "[red]yes[/red]" if timer_status.is_threshold_exceeded else "no"
    table.add_row("Threshold exceeded", exceeded)
    if timer_status.break_type:
        table.add_row("Break", timer_status.break_type.value)
        table.add_row("Break remaining", format_duration(timer_status.remaining_break_ms))
    table.add_row("Browser focused", "yes" if timer_status.is_browser_focused else "no")
    table.add_row("Recovery", action)
    console.print(table)


@cli.command()
@click.pass_context
def settings(ctx):
    """Show break settings."""
    config = ctx.obj["config"]
    try:
        manager = asyncio.run(_load_settings(config))
    except StorageError as e:
        raise click.ClickException(str(e))
    if not config.db_path.exists():
        click.echo(f"No timer database at {config.db_path}, showing defaults")
    current = manager.get_settings()

    table = Table(title="Break Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Work threshold", f"{current.work_time_threshold_minutes} min")
    table.add_row("Notifications", "enabled" if current.notifications_enabled else "disabled")
    for break_type, cfg in current.break_types.items():
        table.add_row(f"{break_type.value} break", f"{cfg.duration} min ({cfg.label})")
    console.print(table)


@cli.command("set-threshold")
@click.argument("minutes", type=int)
@click.pass_context
def set_threshold(ctx, minutes):
    """Set the work time threshold (5-180 minutes)."""
    config = ctx.obj["config"]
    try:
        ok = asyncio.run(_set_threshold(config, minutes))
    except StorageError as e:
        raise click.ClickException(str(e))
    if not ok:
        raise click.ClickException(f"Invalid work time threshold: {minutes} minutes")
    click.echo(f"Work time threshold set to {minutes} minutes")


def main():
    cli()


if __name__ == "__main__":
    main()

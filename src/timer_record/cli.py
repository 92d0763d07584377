"""Command-line interface for Timer Record."""

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import typer

from .config import (
    CONFIG_KEYS,
    TrackerConfig,
    format_config_value,
    get_config_value,
    load_config,
    reset_config,
    set_config_value,
)
from .db import EntryStore, add_rule, fetch_categories, fetch_rules, remove_rule
from .errors import TimerRecordError
from .models import PomodoroSession, TimeEntry
from .paths import get_config_path, get_db_path, get_log_path

app = typer.Typer(help="Automatic and manual time tracking.")
rules_app = typer.Typer(help="Manage categorization rules.")
config_app = typer.Typer(help="Show and change configuration.")
pomodoro_app = typer.Typer(help="Pomodoro timer.")
app.add_typer(rules_app, name="rules")
app.add_typer(config_app, name="config")
app.add_typer(pomodoro_app, name="pomodoro")

DB_OPTION = typer.Option(
    None,
    "--db",
    path_type=Path,
    help="Location of the Timer Record SQLite database.",
)

logger = logging.getLogger(__name__)


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _fail(exc: TimerRecordError) -> None:
    typer.secho(f"Error: {exc.message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@contextmanager
def _store(db_path: Optional[Path]) -> Iterator[EntryStore]:
    try:
        store = EntryStore.open(db_path or get_db_path())
    except TimerRecordError as exc:
        _fail(exc)
    try:
        yield store
    except TimerRecordError as exc:
        _fail(exc)
    finally:
        store.close()


def _describe_entry(entry: TimeEntry, now: datetime) -> None:
    typer.echo(f"  Category: {entry.category_name or 'uncategorized'}")
    if entry.app_name:
        typer.echo(f"  App:      {entry.app_name}")
    typer.echo(f"  Started:  {entry.start_time.strftime('%Y-%m-%d %H:%M:%S')}")
    duration = entry.duration_seconds if entry.end_time else entry.elapsed_seconds(now)
    typer.echo(f"  Duration: {format_duration(duration or 0)}")
    if entry.is_paused:
        typer.echo("  Paused:   yes (idle)")
    if entry.notes:
        typer.echo(f"  Notes:    {entry.notes}")


@app.command()
def daemon(
    db_path: Optional[Path] = DB_OPTION,
    poll_interval: Optional[int] = typer.Option(
        None, "--interval", min=1, help="Polling interval in seconds."
    ),
    idle_threshold: Optional[int] = typer.Option(
        None, "--idle-threshold", min=1, help="Seconds of inactivity before auto-pausing."
    ),
    min_duration: Optional[int] = typer.Option(
        None, "--min-duration", min=0, help="Entries shorter than this many seconds are discarded."
    ),
) -> None:
    """Run the automatic tracker in the foreground until interrupted."""
    from .tracker import TrackerService

    try:
        config = TrackerConfig.from_app_config(
            load_config(),
            poll_interval=poll_interval,
            idle_threshold=idle_threshold,
            min_entry_duration=min_duration,
        )
    except TimerRecordError as exc:
        _fail(exc)

    file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.getLogger().addHandler(file_handler)

    try:
        tracker = TrackerService.open(db_path or get_db_path(), config)
    except TimerRecordError as exc:
        _fail(exc)
    signal.signal(signal.SIGTERM, lambda *_: tracker.request_stop())
    try:
        if not tracker.run_forever():
            typer.secho("Tracker could not start.", fg=typer.colors.RED, err=True)
            typer.echo(tracker.probe.permission_instructions(), err=True)
            raise typer.Exit(code=1)
    finally:
        tracker.close()


@app.command()
def detect(db_path: Optional[Path] = DB_OPTION) -> None:
    """Show what the window probe currently sees and how its rules categorize it."""
    from .categorization import Categorizer
    from .probe import get_default_probe

    probe = get_default_probe()
    permitted = probe.has_permission()
    descriptor = probe.get_active_window()
    idle = probe.get_idle_seconds()
    typer.echo(f"Platform:   {probe.platform_name}")
    typer.echo(f"Permission: {'granted' if permitted else 'missing'}")
    typer.echo(f"App:        {descriptor.app_name or '(unknown)'}")
    typer.echo(f"Identifier: {descriptor.app_identifier or '(none)'}")
    typer.echo(f"Title:      {descriptor.window_title or '(none)'}")
    typer.echo(f"Idle:       {idle}s")
    with _store(db_path) as store:
        category = Categorizer.from_store(store).categorize(descriptor)
    typer.echo(f"Category:   {category or 'uncategorized'}")
    if not permitted:
        typer.echo(probe.permission_instructions())


@app.command()
def start(
    category: Optional[str] = typer.Argument(None, help="Category to track."),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Notes for the entry."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Start a manual timer."""
    from .timer import start_timer

    with _store(db_path) as store:
        entry = start_timer(
            store, category=category or load_config().default_category, notes=notes
        )
        typer.secho(
            f"Timer started for {entry.category_name or 'uncategorized'}",
            fg=typer.colors.GREEN,
        )


@app.command()
def stop(db_path: Optional[Path] = DB_OPTION) -> None:
    """Stop the running timer."""
    from .timer import stop_timer

    with _store(db_path) as store:
        entry = stop_timer(store)
        if entry is None:
            typer.secho("No active timer running", fg=typer.colors.YELLOW)
            return
        typer.secho("Timer stopped", fg=typer.colors.GREEN)
        _describe_entry(entry, store.now())


@app.command()
def status(db_path: Optional[Path] = DB_OPTION) -> None:
    """Show the running timer, if any."""
    from .timer import get_timer_status

    with _store(db_path) as store:
        entry = get_timer_status(store)
        if entry is None:
            typer.echo("No active timer running")
            return
        kind = "manual" if entry.is_manual else "automatic"
        typer.echo(f"Active {kind} entry #{entry.id}")
        _describe_entry(entry, store.now())


@app.command("log")
def log_command(
    category: str = typer.Argument(..., help="Category to log time against."),
    duration: str = typer.Option(..., "--duration", "-d", help='Duration such as "1h30m", "2h", "30m" or "90".'),
    at: Optional[str] = typer.Option(None, "--at", help='Start time such as "2pm", "14:30" or "yesterday 2pm".'),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Notes for the entry."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Log a finished block of time."""
    from .timer import log_entry, parse_duration, parse_time

    seconds = parse_duration(duration)
    if seconds is None or seconds <= 0:
        typer.secho(f"Error: Invalid duration: {duration}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    start_time = None
    if at:
        start_time = parse_time(at)
        if start_time is None:
            typer.secho(f"Error: Invalid time: {at}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    with _store(db_path) as store:
        entry = log_entry(store, category, seconds, start_time=start_time, notes=notes)
        typer.secho(
            f"Logged {format_duration(seconds)} for {entry.category_name}",
            fg=typer.colors.GREEN,
        )


@app.command()
def note(
    text: str = typer.Argument(..., help="Notes to attach to the running entry."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Attach notes to the running entry."""
    from .timer import add_note

    with _store(db_path) as store:
        if add_note(store, text) is None:
            typer.secho("No active timer running", fg=typer.colors.YELLOW)
            return
        typer.secho("Notes updated", fg=typer.colors.GREEN)


@app.command()
def today(
    date: Optional[str] = typer.Option(
        None, "--date", help="Date (YYYY-MM-DD) to list. Defaults to today."
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """List the entries recorded on one day."""
    try:
        target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    except ValueError:
        typer.secho(f"Error: Invalid date: {date}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    with _store(db_path) as store:
        entries = store.entries_for_day(target)
        now = store.now()
    if not entries:
        typer.echo("No entries recorded for the selected day.")
        return
    total = 0
    for entry in entries:
        seconds = entry.duration_seconds if entry.end_time else entry.elapsed_seconds(now)
        total += seconds or 0
        label = entry.app_name or ("manual" if entry.is_manual else "unknown")
        typer.echo(
            f"  {entry.start_time.strftime('%H:%M')}  "
            f"{(entry.category_name or 'uncategorized'):<20} "
            f"{label[:30]:<30} {format_duration(seconds or 0)}"
        )
    typer.echo(f"Total: {format_duration(total)}")


@app.command()
def categories(db_path: Optional[Path] = DB_OPTION) -> None:
    """List the available categories."""
    with _store(db_path) as store:
        for category in fetch_categories(store.conn):
            marker = "" if category.is_productive else " (unproductive)"
            typer.echo(f"  {category.name}{marker}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the control API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the control API."
    ),
    db_path: Optional[Path] = DB_OPTION,
    autostart: bool = typer.Option(
        True, "--autostart/--no-autostart", help="Start tracking as soon as the server is up."
    ),
) -> None:
    """Serve the local control API used by the menubar app."""
    from .server_runner import run_server

    try:
        config = TrackerConfig.from_app_config(load_config())
    except TimerRecordError as exc:
        _fail(exc)
    run_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        config=config,
        autostart=autostart,
    )


@rules_app.command("list")
def rules_list(db_path: Optional[Path] = DB_OPTION) -> None:
    """List user rules in evaluation order."""
    with _store(db_path) as store:
        rules = fetch_rules(store.conn)
    if not rules:
        typer.echo("No user rules defined.")
        return
    for rule in rules:
        parts = []
        if rule.app_identifier:
            parts.append(f"id={rule.app_identifier}")
        if rule.app_name_pattern:
            parts.append(f"app~{rule.app_name_pattern}")
        if rule.window_title_pattern:
            parts.append(f"title~{rule.window_title_pattern}")
        typer.echo(f"  #{rule.id} [{rule.priority}] {' '.join(parts)} -> {rule.category_name}")


@rules_app.command("add")
def rules_add(
    category: str = typer.Argument(..., help="Category assigned by the rule."),
    app_name: Optional[str] = typer.Option(None, "--app", help="Application name pattern."),
    app_identifier: Optional[str] = typer.Option(None, "--id", help="Exact application identifier."),
    title: Optional[str] = typer.Option(None, "--title", help="Window title pattern."),
    priority: int = typer.Option(0, "--priority", "-p", help="Higher priorities are evaluated first."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Add a categorization rule."""
    with _store(db_path) as store:
        try:
            rule = add_rule(
                store.conn,
                category,
                app_name_pattern=app_name,
                app_identifier=app_identifier,
                window_title_pattern=title,
                priority=priority,
            )
        except ValueError as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
    typer.secho(f"Rule #{rule.id} added for {rule.category_name}", fg=typer.colors.GREEN)


@rules_app.command("remove")
def rules_remove(
    rule_id: int = typer.Argument(..., help="Rule id as shown by 'tt rules list'."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Remove a categorization rule."""
    with _store(db_path) as store:
        removed = remove_rule(store.conn, rule_id)
    if not removed:
        typer.secho(f"Error: Rule not found: {rule_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"Rule #{rule_id} removed", fg=typer.colors.GREEN)


@config_app.command("show")
def config_show() -> None:
    """Print every configuration value."""
    try:
        config = load_config()
    except TimerRecordError as exc:
        _fail(exc)
    typer.echo(f"Config file: {get_config_path()}")
    for key in CONFIG_KEYS:
        typer.echo(f"  {key:<38} {format_config_value(key, get_config_value(config, key))}")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Configuration key."),
    value: str = typer.Argument(..., help="New value."),
) -> None:
    """Change one configuration value."""
    try:
        config = set_config_value(key, value)
    except TimerRecordError as exc:
        _fail(exc)
    typer.secho(
        f"{key} = {format_config_value(key, get_config_value(config, key))}",
        fg=typer.colors.GREEN,
    )


@config_app.command("reset")
def config_reset() -> None:
    """Restore the default configuration."""
    reset_config()
    typer.secho("Configuration reset to defaults", fg=typer.colors.GREEN)


def _print_pomodoro(session: PomodoroSession, now: datetime) -> None:
    from .pomodoro import remaining_seconds

    typer.echo(
        f"Pomodoro #{session.id}: {session.state.value} "
        f"(session {session.current_session}, {format_duration(remaining_seconds(session, now))} left)"
    )


@pomodoro_app.command("start")
def pomodoro_start(
    category: Optional[str] = typer.Argument(None, help="Category for work phases."),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Notes for the work entries."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Start a pomodoro session with a work phase."""
    from .pomodoro import start_pomodoro

    with _store(db_path) as store:
        config = load_config()
        session = start_pomodoro(
            store, config.pomodoro, category=category or config.default_category, notes=notes
        )
        _print_pomodoro(session, store.now())


@pomodoro_app.command("next")
def pomodoro_next(db_path: Optional[Path] = DB_OPTION) -> None:
    """Finish the current phase and move to the next one."""
    from .pomodoro import advance_phase

    with _store(db_path) as store:
        _print_pomodoro(advance_phase(store), store.now())


@pomodoro_app.command("pause")
def pomodoro_pause(db_path: Optional[Path] = DB_OPTION) -> None:
    """Pause the running pomodoro."""
    from .pomodoro import pause_pomodoro

    with _store(db_path) as store:
        _print_pomodoro(pause_pomodoro(store), store.now())


@pomodoro_app.command("resume")
def pomodoro_resume(db_path: Optional[Path] = DB_OPTION) -> None:
    """Resume a paused pomodoro."""
    from .pomodoro import resume_pomodoro

    with _store(db_path) as store:
        _print_pomodoro(resume_pomodoro(store), store.now())


@pomodoro_app.command("stop")
def pomodoro_stop(db_path: Optional[Path] = DB_OPTION) -> None:
    """Stop the pomodoro and close its work entry."""
    from .pomodoro import stop_pomodoro

    with _store(db_path) as store:
        session = stop_pomodoro(store)
    if session is None:
        typer.secho("No pomodoro session running", fg=typer.colors.YELLOW)
        return
    typer.secho(
        f"Pomodoro #{session.id} completed after {session.current_session} session(s)",
        fg=typer.colors.GREEN,
    )


@pomodoro_app.command("status")
def pomodoro_status(db_path: Optional[Path] = DB_OPTION) -> None:
    """Show the running pomodoro."""
    from .pomodoro import get_active_pomodoro

    with _store(db_path) as store:
        session = get_active_pomodoro(store)
        if session is None:
            typer.echo("No pomodoro session running")
            return
        _print_pomodoro(session, store.now())

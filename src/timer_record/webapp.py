"""FastAPI application exposing tracker controls to the menubar app."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from .config import TrackerConfig
from .db import Clock, EntryStore, add_rule, fetch_rules, remove_rule
from .errors import (
    CategoryNotFound,
    ConfigurationError,
    EntryNotFound,
    InvariantViolation,
    NoActiveTimer,
    StoreUnavailable,
    TimerRecordError,
)
from .models import CategorizationRule, TimeEntry
from .paths import get_db_path
from .probe import WindowProbe
from .timer import start_timer, stop_timer
from .tracker import TrackerService

logger = logging.getLogger(__name__)


class TimerStartPayload(BaseModel):
    category: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class RulePayload(BaseModel):
    category: str
    app_name_pattern: Optional[str] = None
    app_identifier: Optional[str] = None
    window_title_pattern: Optional[str] = None
    priority: int = 0

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    config: Optional[TrackerConfig] = None,
    probe: Optional[WindowProbe] = None,
    clock: Optional[Clock] = None,
    autostart: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_config = config or TrackerConfig()
    tracker = TrackerService.open(resolved_db_path, resolved_config, probe=probe, clock=clock)

    app = FastAPI(title="Timer Record", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.tracker = tracker

    @contextmanager
    def entry_store() -> Iterator[EntryStore]:
        try:
            store = EntryStore.open(resolved_db_path, clock=clock)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=exc.message) from exc
        try:
            yield store
        except TimerRecordError as exc:
            raise _to_http_error(exc) from exc
        finally:
            store.close()

    @app.on_event("startup")
    async def _startup() -> None:
        if autostart and not tracker.start():
            logger.warning("Tracker did not start: %s", tracker.probe.permission_instructions())

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        tracker.close()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        current: TrackerService = request.app.state.tracker
        try:
            tracker_status = current.get_status()
        except TimerRecordError as exc:
            raise _to_http_error(exc) from exc
        with entry_store() as store:
            active = store.get_active_entry()
            now = store.now()
        auto_pause = tracker_status.auto_pause
        return {
            "tracker_running": tracker_status.running,
            "state": tracker_status.state.value,
            "database_path": str(request.app.state.db_path),
            "poll_interval_seconds": resolved_config.poll_interval_seconds,
            "idle_threshold_seconds": resolved_config.idle_threshold_seconds,
            "min_entry_duration_seconds": resolved_config.min_entry_duration_seconds,
            "auto_paused_since": auto_pause.idle_since.isoformat() if auto_pause else None,
            "last_error": tracker_status.last_error,
            "active_entry": _entry_payload(active, now) if active else None,
        }

    @app.post("/api/tracker/start")
    def tracker_start(request: Request) -> Dict[str, Any]:
        current: TrackerService = request.app.state.tracker
        started = current.start()
        return {"started": started, "running": current.is_running()}

    @app.post("/api/tracker/stop")
    def tracker_stop(request: Request) -> Dict[str, Any]:
        current: TrackerService = request.app.state.tracker
        was_running = current.is_running()
        closed = current.stop()
        return {
            "stopped": was_running,
            "closed_entry_id": closed.id if closed else None,
        }

    @app.post("/api/timer/start", status_code=201)
    def timer_start(payload: TimerStartPayload) -> Dict[str, Any]:
        with entry_store() as store:
            entry = start_timer(store, category=payload.category, notes=payload.notes)
            return _entry_payload(entry, store.now())

    @app.post("/api/timer/stop")
    def timer_stop() -> Dict[str, Any]:
        with entry_store() as store:
            entry = stop_timer(store)
            if entry is None:
                raise _to_http_error(NoActiveTimer())
            return _entry_payload(entry, store.now())

    @app.get("/api/entries")
    def entries(
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        with entry_store() as store:
            rows = store.entries_for_day(target_day)
            now = store.now()
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "entries": [_entry_payload(entry, now) for entry in rows],
        }

    @app.get("/api/rules")
    def list_rules() -> Dict[str, Any]:
        with entry_store() as store:
            rules = fetch_rules(store.conn)
        return {"rules": [_rule_payload(rule) for rule in rules]}

    @app.post("/api/rules", status_code=201)
    def create_rule(payload: RulePayload) -> Dict[str, Any]:
        with entry_store() as store:
            try:
                rule = add_rule(
                    store.conn,
                    payload.category,
                    app_name_pattern=payload.app_name_pattern,
                    app_identifier=payload.app_identifier,
                    window_title_pattern=payload.window_title_pattern,
                    priority=payload.priority,
                )
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _rule_payload(rule)

    @app.delete("/api/rules/{rule_id}")
    def delete_rule(rule_id: int) -> Dict[str, Any]:
        with entry_store() as store:
            removed = remove_rule(store.conn, rule_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Rule not found")
        return {"deleted": rule_id}

    return app


def _to_http_error(exc: TimerRecordError) -> HTTPException:
    if isinstance(exc, InvariantViolation):
        status_code = 409
    elif isinstance(exc, (CategoryNotFound, EntryNotFound, NoActiveTimer)):
        status_code = 404
    elif isinstance(exc, ConfigurationError):
        status_code = 400
    else:
        status_code = 503
    return HTTPException(
        status_code=status_code, detail={"code": exc.code, "message": exc.message}
    )


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _entry_payload(entry: TimeEntry, now: datetime) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "category": entry.category_name,
        "app_name": entry.app_name,
        "app_identifier": entry.app_identifier,
        "window_title": entry.window_title,
        "start_time": entry.start_time.isoformat(),
        "end_time": entry.end_time.isoformat() if entry.end_time else None,
        "duration_seconds": (
            entry.duration_seconds if entry.end_time else entry.elapsed_seconds(now)
        ),
        "is_manual": entry.is_manual,
        "is_paused": entry.is_paused,
        "notes": entry.notes,
    }


def _rule_payload(rule: CategorizationRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "category": rule.category_name,
        "priority": rule.priority,
        "app_name_pattern": rule.app_name_pattern,
        "app_identifier": rule.app_identifier,
        "window_title_pattern": rule.window_title_pattern,
    }

from __future__ import annotations

import os
import sqlite3
import sys
from typing import Any

from .models import utc_now
from .settings import settings

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (docker creates one when a
    bind-mounted file is missing), the journal file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "skyreg.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def journal_enabled() -> bool:
    return bool(settings.db_path)


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the journal table if it does not exist."""
    if not journal_enabled():
        return
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_key TEXT,
              service_name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_key ON events(service_key);
            """
        )


def _echo(ts: str, level: str, message: str, service_key: str | None) -> None:
    threshold = LEVELS.get(settings.log_level.upper(), LEVELS["INFO"])
    if LEVELS.get(level, LEVELS["INFO"]) < threshold:
        return
    prefix = f"[{service_key}] " if service_key else ""
    print(f"{ts} {level:<5} {prefix}{message}", file=sys.stderr, flush=True)


def log_event(
    level: str,
    message: str,
    service_key: str | None = None,
    service_name: str | None = None,
) -> None:
    level = level.upper()
    ts = utc_now()
    _echo(ts, level, message, service_key)
    if not journal_enabled() or level == "DEBUG":
        return
    # The journal must never take down the caller; the stderr echo above still ran.
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, service_key, service_name, message) VALUES (?, ?, ?, ?, ?)",
                (ts, level, service_key, service_name, message),
            )
    except sqlite3.Error as e:
        print(f"{ts} ERROR journal write failed: {e}", file=sys.stderr, flush=True)


def latest_events(limit: int = 100, service_key: str | None = None) -> list[dict[str, Any]]:
    if not journal_enabled():
        return []
    with connect() as conn:
        if service_key:
            rows = conn.execute(
                "SELECT * FROM events WHERE service_key=? ORDER BY id DESC LIMIT ?",
                (service_key, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]

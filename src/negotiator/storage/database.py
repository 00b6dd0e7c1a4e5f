"""SQLite database with WAL mode, and the event journal built on it."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from negotiator.core.events import Event, EventBus

logger = logging.getLogger(__name__)


class Database:
    """SQLite storage layer with WAL mode for the negotiator."""

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or Path.home() / ".negotiator"
        self.db_path = self.data_dir / "data" / "negotiator.db"

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "data").mkdir(exist_ok=True)
        (self.data_dir / "logs").mkdir(exist_ok=True)

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with WAL mode."""
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            conn.executescript(_SCHEMA)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid or 0


class EventJournal:
    """Appends every published event to the ``events`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self._subscription: str | None = None
        self.db.ensure_tables()

    def attach(self, bus: EventBus) -> str:
        self._subscription = bus.subscribe(Event, self.record)
        return self._subscription

    def detach(self, bus: EventBus) -> None:
        if self._subscription is not None:
            bus.unsubscribe(self._subscription)
            self._subscription = None

    def record(self, event: Event) -> int:
        payload = event.to_dict()
        return self.db.execute_insert(
            "INSERT INTO events (topic, kind, timestamp, payload) VALUES (?, ?, ?, ?)",
            (
                event.topic,
                str(payload.get("kind", "")),
                event.timestamp,
                json.dumps(payload, default=str),
            ),
        )

    def recent(self, limit: int = 20, topic: str | None = None) -> list[dict[str, Any]]:
        """Newest events first."""
        if topic:
            rows = self.db.execute(
                "SELECT * FROM events WHERE topic = ? ORDER BY id DESC LIMIT ?", (topic, limit)
            )
        else:
            rows = self.db.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,))
        return [
            {
                "id": row["id"],
                "topic": row["topic"],
                "kind": row["kind"],
                "timestamp": row["timestamp"],
                "payload": json.loads(row["payload"]),
            }
            for row in rows
        ]

    def count(self) -> int:
        rows = self.db.execute("SELECT COUNT(*) AS n FROM events")
        return rows[0]["n"] if rows else 0


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic TEXT NOT NULL,
    kind TEXT NOT NULL,
    timestamp REAL NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    recorded_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_topic ON events(topic, id DESC);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""

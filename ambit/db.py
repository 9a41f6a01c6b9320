"""SQLite schema + queries — raw activity feed tables and the graph snapshot store."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from uuid_extensions import uuid7

from ambit.models import ActivityEntry, ClipboardEntry, ContentSnapshot, NowPlayingEntry
from ambit.time import require_utc

SCHEMA = """
CREATE TABLE IF NOT EXISTS activity (
    id TEXT PRIMARY KEY,
    app TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    url TEXT,
    summary TEXT,
    start TEXT NOT NULL,
    end TEXT NOT NULL,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    ingested_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(app, title, start)
);

CREATE INDEX IF NOT EXISTS idx_activity_start ON activity(start);

CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    app TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    url TEXT,
    text TEXT NOT NULL DEFAULT '',
    summary TEXT,
    ingested_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS clipboard (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    app TEXT NOT NULL DEFAULT '',
    text TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS now_playing (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    app TEXT NOT NULL DEFAULT '',
    track TEXT NOT NULL,
    artist TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

# Migrations applied after initial schema creation.
# CONTRIBUTOR INVARIANT: all migrations must be additive-only (ALTER TABLE ADD COLUMN,
# CREATE INDEX IF NOT EXISTS), idempotent, and never destructive. Never DROP, RENAME,
# or modify existing columns or rows. OperationalError "already exists" / "duplicate column"
# is caught and treated as a no-op.
_MIGRATIONS = [
    ("CREATE INDEX IF NOT EXISTS idx_snapshots_time ON snapshots(timestamp)", "snapshots_time_idx"),
    ("CREATE INDEX IF NOT EXISTS idx_clipboard_time ON clipboard(timestamp)", "clipboard_time_idx"),
    ("CREATE INDEX IF NOT EXISTS idx_now_playing_time ON now_playing(timestamp)", "now_playing_time_idx"),
]

FEED_TABLES = ("activity", "snapshots", "clipboard", "now_playing")


def _iso(dt: datetime) -> str:
    return require_utc(dt).isoformat()


class AmbitDB:
    """SQLite wrapper for the activity feed and graph snapshots."""

    def __init__(self, db_path: str | Path, *, auto_initialize: bool = True):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")
        if auto_initialize:
            self.initialize()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def __enter__(self) -> AmbitDB:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def initialize(self) -> None:
        """Create tables and indexes, then apply migrations."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        self._migrate()

    def _migrate(self) -> None:
        """Apply schema migrations safely (idempotent)."""
        for sql, label in _MIGRATIONS:
            try:
                self._conn.execute(sql)
                self._conn.commit()
            except sqlite3.OperationalError as e:
                if "already exists" in str(e).lower() or "duplicate column" in str(e).lower():
                    pass  # Expected: column/index already present
                else:
                    raise

    # --- Feed writers (ingestion gateway only) ---

    def insert_activity(self, entry: ActivityEntry) -> bool:
        """Insert an activity span, returning True if inserted (not duplicate)."""
        try:
            self._conn.execute(
                """INSERT INTO activity (id, app, title, url, summary, start, end, duration_ms)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(uuid7()),
                    entry.app,
                    entry.title,
                    entry.url,
                    entry.summary,
                    _iso(entry.start),
                    _iso(entry.end),
                    entry.duration_ms,
                ),
            )
            self._conn.commit()
            return True
        except sqlite3.IntegrityError:
            return False

    def insert_snapshot(self, snapshot: ContentSnapshot) -> bool:
        self._conn.execute(
            """INSERT INTO snapshots (id, timestamp, app, title, url, text, summary)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                str(uuid7()),
                _iso(snapshot.timestamp),
                snapshot.app,
                snapshot.title,
                snapshot.url,
                snapshot.text,
                snapshot.summary,
            ),
        )
        self._conn.commit()
        return True

    def insert_clipboard(self, entry: ClipboardEntry) -> bool:
        self._conn.execute(
            "INSERT INTO clipboard (id, timestamp, app, text) VALUES (?, ?, ?, ?)",
            (str(uuid7()), _iso(entry.timestamp), entry.app, entry.text),
        )
        self._conn.commit()
        return True

    def insert_now_playing(self, entry: NowPlayingEntry) -> bool:
        self._conn.execute(
            "INSERT INTO now_playing (id, timestamp, app, track, artist) VALUES (?, ?, ?, ?, ?)",
            (str(uuid7()), _iso(entry.timestamp), entry.app, entry.track, entry.artist),
        )
        self._conn.commit()
        return True

    # --- Feed readers (ingestion order, oldest first) ---

    def get_activity(
        self,
        since: datetime | None = None,
        before: datetime | None = None,
        offset: int = 0,
        limit: int = -1,
    ) -> list[ActivityEntry]:
        query = "SELECT * FROM activity WHERE 1=1"
        params: list = []
        if since:
            query += " AND start >= ?"
            params.append(_iso(since))
        if before:
            query += " AND start < ?"
            params.append(_iso(before))
        # rowid order keeps offsets stable when late records arrive out of time order
        query += " ORDER BY rowid ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self._conn.execute(query, params).fetchall()
        return [
            ActivityEntry(
                app=r["app"],
                title=r["title"],
                url=r["url"],
                summary=r["summary"],
                start=r["start"],
                end=r["end"],
                duration_ms=r["duration_ms"],
            )
            for r in rows
        ]

    def get_snapshots(self, offset: int = 0, limit: int = -1) -> list[ContentSnapshot]:
        rows = self._conn.execute(
            "SELECT * FROM snapshots ORDER BY rowid ASC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [
            ContentSnapshot(
                timestamp=r["timestamp"],
                app=r["app"],
                title=r["title"],
                url=r["url"],
                text=r["text"],
                summary=r["summary"],
            )
            for r in rows
        ]

    def get_clipboard(self, limit: int = 200) -> list[ClipboardEntry]:
        rows = self._conn.execute(
            "SELECT * FROM clipboard ORDER BY timestamp DESC, rowid DESC LIMIT ?", (limit,)
        ).fetchall()
        return [
            ClipboardEntry(timestamp=r["timestamp"], app=r["app"], text=r["text"])
            for r in reversed(rows)
        ]

    def get_now_playing(self, limit: int = 200) -> list[NowPlayingEntry]:
        rows = self._conn.execute(
            "SELECT * FROM now_playing ORDER BY timestamp DESC, rowid DESC LIMIT ?", (limit,)
        ).fetchall()
        return [
            NowPlayingEntry(
                timestamp=r["timestamp"], app=r["app"], track=r["track"], artist=r["artist"]
            )
            for r in reversed(rows)
        ]

    def count(self, table: str) -> int:
        if table not in FEED_TABLES:
            raise ValueError(f"Unknown feed table: {table!r}")
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def latest_activity(self) -> ActivityEntry | None:
        rows = self._conn.execute(
            "SELECT * FROM activity ORDER BY start DESC, rowid DESC LIMIT 1"
        ).fetchall()
        if not rows:
            return None
        r = rows[0]
        return ActivityEntry(
            app=r["app"], title=r["title"], url=r["url"], summary=r["summary"],
            start=r["start"], end=r["end"], duration_ms=r["duration_ms"],
        )

    # --- Key-value snapshots ---

    def get_value(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_value(self, key: str, value: str) -> None:
        self._conn.execute(
            """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, value, datetime.now(UTC).isoformat()),
        )
        self._conn.commit()

    def get_json(self, key: str) -> Any | None:
        """Decode a JSON value; None if missing or corrupt."""
        raw = self.get_value(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    def set_json_many(self, values: dict[str, Any]) -> None:
        """Write several JSON values in one transaction."""
        now = datetime.now(UTC).isoformat()
        with self._conn:
            self._conn.executemany(
                """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                [(k, json.dumps(v), now) for k, v in values.items()],
            )

    def value_updated_at(self, key: str) -> str | None:
        row = self._conn.execute("SELECT updated_at FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def get_status(self) -> dict:
        """Feed counts plus last snapshot time."""
        return {
            "feed": {t: self.count(t) for t in FEED_TABLES},
            "graph_saved_at": self.value_updated_at("graph_nodes"),
        }

"""Snapshot store backed by SQLite.

Each save writes one full GraphSnapshot as JSON. The latest snapshot is
the current graph for the CLI; older ones are kept as history until
deleted.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .errors import SnapshotNotFoundError
from .models import GraphSnapshot, generate_id

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass
class SnapshotInfo:
    """Row summary of a stored snapshot (payload not loaded)."""

    id: str
    taken_at: datetime
    label: str
    node_count: int
    relationship_count: int


class SnapshotStore:
    """Append-style snapshot history in a SQLite file."""

    def __init__(self, db_path: Path | str):
        """Open (and create if needed) the snapshot database.

        Args:
            db_path: Path to the SQLite file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._get_conn()

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_conn()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)
        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif version[0] > SCHEMA_VERSION:
            logger.warning(f"Schema version {version[0]} is newer than supported ({SCHEMA_VERSION})")

        conn.executescript("""
            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                taken_at TEXT NOT NULL,
                label TEXT NOT NULL DEFAULT '',
                node_count INTEGER NOT NULL,
                relationship_count INTEGER NOT NULL,
                data TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_taken_at ON snapshots(taken_at);
        """)
        conn.commit()

    @staticmethod
    def _row_to_info(row: sqlite3.Row) -> SnapshotInfo:
        return SnapshotInfo(
            id=row["id"],
            taken_at=datetime.fromisoformat(row["taken_at"]),
            label=row["label"],
            node_count=row["node_count"],
            relationship_count=row["relationship_count"],
        )

    def save(self, snapshot: GraphSnapshot, label: str = "") -> SnapshotInfo:
        """Store a snapshot. Returns its summary row."""
        info = SnapshotInfo(
            id=generate_id(),
            taken_at=snapshot.taken_at,
            label=label,
            node_count=len(snapshot.nodes),
            relationship_count=len(snapshot.relationships),
        )
        conn = self._get_conn()
        conn.execute(
            """
            INSERT INTO snapshots (id, taken_at, label, node_count, relationship_count, data)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                info.id,
                info.taken_at.isoformat(),
                info.label,
                info.node_count,
                info.relationship_count,
                snapshot.model_dump_json(),
            ),
        )
        conn.commit()
        logger.debug(f"Saved snapshot {info.id} ({info.node_count} nodes, {info.relationship_count} relationships)")
        return info

    def load(self, snapshot_id: str | None = None) -> GraphSnapshot:
        """Load a snapshot by id, or the most recent one.

        Raises:
            SnapshotNotFoundError: If the id is unknown or the store is empty
            ValueError: If the stored payload no longer validates
        """
        conn = self._get_conn()
        if snapshot_id is None:
            row = conn.execute(
                "SELECT id, data FROM snapshots ORDER BY taken_at DESC, id DESC LIMIT 1"
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT id, data FROM snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()

        if row is None:
            raise SnapshotNotFoundError(snapshot_id)
        return GraphSnapshot.model_validate_json(row["data"])

    def latest_or_empty(self) -> GraphSnapshot:
        """Most recent snapshot, or an empty one for a fresh database."""
        try:
            return self.load()
        except SnapshotNotFoundError:
            return GraphSnapshot()

    def list_snapshots(self, limit: int | None = None) -> list[SnapshotInfo]:
        """Snapshot summaries, newest first."""
        sql = "SELECT id, taken_at, label, node_count, relationship_count FROM snapshots ORDER BY taken_at DESC, id DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [self._row_to_info(row) for row in self._get_conn().execute(sql, params)]

    def delete(self, snapshot_id: str) -> bool:
        conn = self._get_conn()
        cursor = conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
        conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SnapshotStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

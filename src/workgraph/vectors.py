"""Vector stores for node embeddings.

Provides:
- VectorStore: upsert/query/delete interface used by the graph service
- InMemoryVectorStore: numpy scan, no extra dependencies
- SqliteVectorStore: sqlite-vec virtual table, optional dependency

Scores are cosine similarities in [-1, 1], best first.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .errors import ExternalProviderError
from .similarity import rank_by_similarity

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class VectorStore(Protocol):
    def upsert(self, id: str, vector: list[float], metadata: dict[str, Any] | None = None) -> None:
        ...

    def query(self, vector: list[float], top_k: int = 10, min_score: float = 0.0) -> list[VectorMatch]:
        ...

    def delete(self, id: str) -> bool:
        ...


class InMemoryVectorStore:
    """Brute-force cosine scan over vectors held in memory."""

    def __init__(self):
        self._vectors: dict[str, list[float]] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, id: str) -> bool:
        return id in self._vectors

    def upsert(self, id: str, vector: list[float], metadata: dict[str, Any] | None = None) -> None:
        with self._lock:
            other = next((v for k, v in self._vectors.items() if k != id), None)
            if other is not None and len(other) != len(vector):
                raise ValueError(f"Vector length {len(vector)} does not match store dimension {len(other)}")
            self._vectors[id] = list(vector)
            self._metadata[id] = dict(metadata or {})

    def query(self, vector: list[float], top_k: int = 10, min_score: float = 0.0) -> list[VectorMatch]:
        with self._lock:
            ranked = rank_by_similarity(vector, list(self._vectors.items()), top_k, min_score)
            return [VectorMatch(id=i, score=s, metadata=dict(self._metadata[i])) for i, s in ranked]

    def delete(self, id: str) -> bool:
        with self._lock:
            self._metadata.pop(id, None)
            return self._vectors.pop(id, None) is not None


class VectorStatus(Enum):
    """Status of the sqlite-vec backend."""

    READY = "ready"
    UNAVAILABLE = "unavailable"  # extension failed to load


@dataclass
class VectorHealth:
    status: VectorStatus
    error: str | None = None
    dimension: int | None = None


class SqliteVectorStore:
    """Vector similarity search backed by a sqlite-vec vec0 table.

    The table is created on the first upsert, sized to that vector. The
    extension is loaded when the store opens; if that fails every call
    raises ExternalProviderError and `health` says why.
    """

    def __init__(self, db_path: Path | str = ":memory:", conn: sqlite3.Connection | None = None):
        """Open the store.

        Args:
            db_path: SQLite file, ignored when conn is given
            conn: Shared connection (e.g. from SnapshotStore), not closed by us
        """
        self._owns_connection = conn is None
        self.conn = conn if conn is not None else sqlite3.connect(str(db_path), check_same_thread=False)
        self._dims: int | None = None
        self._lock = threading.RLock()
        self.health = VectorHealth(status=VectorStatus.UNAVAILABLE)
        self._try_load_extension()

    def _try_load_extension(self) -> bool:
        try:
            import sqlite_vec

            self.conn.enable_load_extension(True)
            sqlite_vec.load(self.conn)
            self.conn.enable_load_extension(False)
        except (ImportError, OSError, AttributeError, sqlite3.Error) as e:
            self.health = VectorHealth(status=VectorStatus.UNAVAILABLE, error=f"sqlite-vec extension failed: {e}")
            logger.warning(f"Vector store unavailable: {e}")
            return False

        self._init_meta_table()
        self._dims = self._existing_dims()
        self.health = VectorHealth(status=VectorStatus.READY, dimension=self._dims)
        return True

    def _require_ready(self) -> None:
        if self.health.status != VectorStatus.READY:
            raise ExternalProviderError(self.health.error or "Vector store unavailable", provider="sqlite-vec")

    def _init_meta_table(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS node_vector_meta (
                node_id TEXT PRIMARY KEY,
                metadata TEXT NOT NULL DEFAULT '{}'
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS node_vector_config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        self.conn.commit()

    def _existing_dims(self) -> int | None:
        row = self.conn.execute(
            "SELECT value FROM node_vector_config WHERE key = 'dimension'"
        ).fetchone()
        return int(row[0]) if row else None

    def _ensure_table(self, dims: int) -> None:
        if self._dims is not None:
            if dims != self._dims:
                raise ValueError(f"Vector length {dims} does not match store dimension {self._dims}")
            return

        self.conn.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS node_vectors
            USING vec0(
                node_id TEXT PRIMARY KEY,
                embedding FLOAT[{dims}] distance_metric=cosine
            )
        """)
        self.conn.execute(
            "INSERT OR REPLACE INTO node_vector_config (key, value) VALUES ('dimension', ?)",
            (str(dims),),
        )
        self.conn.commit()
        self._dims = dims
        self.health.dimension = dims

    def upsert(self, id: str, vector: list[float], metadata: dict[str, Any] | None = None) -> None:
        self._require_ready()
        import sqlite_vec

        with self._lock:
            self._ensure_table(len(vector))
            # vec0 has no upsert: delete + insert
            self.conn.execute("DELETE FROM node_vectors WHERE node_id = ?", (id,))
            self.conn.execute(
                "INSERT INTO node_vectors (node_id, embedding) VALUES (?, ?)",
                (id, sqlite_vec.serialize_float32(vector)),
            )
            self.conn.execute(
                "INSERT OR REPLACE INTO node_vector_meta (node_id, metadata) VALUES (?, ?)",
                (id, json.dumps(metadata or {}, default=str)),
            )
            self.conn.commit()

    def query(self, vector: list[float], top_k: int = 10, min_score: float = 0.0) -> list[VectorMatch]:
        self._require_ready()
        import sqlite_vec

        with self._lock:
            if self._dims is None or top_k <= 0:
                return []
            if len(vector) != self._dims:
                raise ValueError(f"Vector length {len(vector)} does not match store dimension {self._dims}")

            rows = self.conn.execute(
                """
                SELECT v.node_id, v.distance, m.metadata
                FROM node_vectors v
                LEFT JOIN node_vector_meta m ON m.node_id = v.node_id
                WHERE v.embedding MATCH ? AND k = ?
                ORDER BY v.distance
            """,
                (sqlite_vec.serialize_float32(vector), top_k),
            ).fetchall()

        # cosine distance -> similarity
        matches = [
            VectorMatch(id=node_id, score=1.0 - distance, metadata=json.loads(meta or "{}"))
            for node_id, distance, meta in rows
        ]
        return [m for m in matches if m.score >= min_score]

    def delete(self, id: str) -> bool:
        self._require_ready()
        with self._lock:
            removed = False
            if self._dims is not None:
                cursor = self.conn.execute("DELETE FROM node_vectors WHERE node_id = ?", (id,))
                removed = cursor.rowcount > 0
            self.conn.execute("DELETE FROM node_vector_meta WHERE node_id = ?", (id,))
            self.conn.commit()
            return removed

    def close(self) -> None:
        """Close database connection (only if we own it)."""
        if self._owns_connection:
            self.conn.close()

"""SQLite database access for the webhook registry.

Provides the ``WebhookDB`` class holding two tables:
- ``webhooks``: live webhook definitions
- ``retired_tokens``: tokens of removed webhooks, never to be minted again
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from webhookbot.errors import StorageFailure

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS webhooks (
    token TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    name TEXT NOT NULL,
    template TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    UNIQUE (conversation_id, name)
);

CREATE TABLE IF NOT EXISTS retired_tokens (
    token TEXT PRIMARY KEY,
    retired_at TEXT NOT NULL
);
"""

_SQLITE_SCHEME = "sqlite://"


def dsn_to_path(dsn: str) -> str:
    """Turn ``sqlite:///relative.db``, ``sqlite:////abs.db`` or a bare path into a file path."""
    if dsn.startswith(_SQLITE_SCHEME):
        path = dsn[len(_SQLITE_SCHEME):]
        # sqlite:///x -> "/x" means relative; sqlite:////x -> "//x" means absolute
        return path[1:] if path.startswith("/") else path
    if "://" in dsn:
        raise StorageFailure(f"Unsupported database DSN scheme: {dsn.split('://', 1)[0]}")
    return dsn


class WebhookDB:
    """SQLite connection wrapper for the registry.

    Provides:
    - WAL mode so the HTTP and chat tasks can read while a command writes
    - Parameterized queries only
    - ``transaction()`` for multi-statement atomic writes
    - translation of driver errors into ``StorageFailure``
    """

    def __init__(self, db_path: str, busy_timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        # One connection shared by worker threads; statements are serialized
        self._lock = threading.RLock()
        try:
            self._initialize(busy_timeout)
        except sqlite3.Error as exc:
            raise StorageFailure(f"Failed to open database {db_path}: {exc}") from exc

    @classmethod
    def from_dsn(cls, dsn: str) -> WebhookDB:
        return cls(dsn_to_path(dsn))

    def _initialize(self, busy_timeout: float) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            self._db_path, timeout=busy_timeout, check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        # Every write is durable before the call returns
        self._conn.execute("PRAGMA synchronous=FULL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageFailure("Database connection is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run several statements as one atomic unit.

        ``sqlite3.IntegrityError`` propagates unchanged so callers can map
        constraint violations; every other driver error becomes ``StorageFailure``.
        """
        with self._lock:
            conn = self.conn
            try:
                with conn:
                    yield conn
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                raise StorageFailure(str(exc)) from exc

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        """Execute and commit a single statement."""
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        with self._lock:
            try:
                row = self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StorageFailure(str(exc)) from exc
        return dict(row) if row is not None else None

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            try:
                rows = self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageFailure(str(exc)) from exc
        return [dict(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> WebhookDB:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

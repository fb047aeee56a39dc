"""SQLite management utilities."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from importlib import resources
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
)


class SQLiteDatabase:
    """Thin wrapper around one shared sqlite3 connection.

    The connection may be used from worker threads (crawls run as background
    tasks); callers serialize multi-statement work with :attr:`lock`.
    """

    def __init__(self, db_path: Path, timeout: float = 10.0) -> None:
        self.db_path = db_path.expanduser()
        self.timeout = timeout
        self.lock = threading.RLock()
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        with self.lock:
            if self._connection is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                connection = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
                connection.row_factory = sqlite3.Row
                for pragma in DEFAULT_PRAGMAS:
                    connection.execute(pragma)
                self._connection = connection
            return self._connection

    def close(self) -> None:
        with self.lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def commit(self) -> None:
        if self._connection is not None:
            self._connection.commit()

    def rollback(self) -> None:
        if self._connection is not None:
            self._connection.rollback()

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        return self.connect().execute(sql, params or [])

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        return self.connect().executemany(sql, seq_of_params)

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        with self.lock:
            return self.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        with self.lock:
            return self.execute(sql, params).fetchone()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the lock for a unit of work; commit on success, roll back on error."""
        with self.lock:
            conn = self.connect()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_sql = resources.files("kennisbank.db").joinpath("schema.sql").read_text(encoding="utf-8")
        with self.lock:
            self.connect().executescript(schema_sql)


__all__ = ["SQLiteDatabase"]

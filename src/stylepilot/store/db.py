from __future__ import annotations

import sqlite3
from pathlib import Path


class Database:
    """SQLite connection holder for the artifact store.

    File databases run in WAL mode so the web server and CLI can read while a
    refinement saves.
    """

    def __init__(self, path: str = ":memory:") -> None:
        self._path = path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._path

    def connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        # Flask may serve requests from worker threads
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Database:
        if self._conn is None:
            self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self.connection.execute(sql, params)

    def fetch_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def commit(self) -> None:
        self.connection.commit()

    @property
    def connection(self) -> sqlite3.Connection:
        assert self._conn is not None, "Database not connected"
        return self._conn

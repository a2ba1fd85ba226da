import os
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator


def get_connection(db_path: str) -> sqlite3.Connection:
    dir_name = os.path.dirname(db_path)
    if dir_name:
        os.makedirs(dir_name, exist_ok=True)
    # autocommit: every transaction in this project is opened explicitly
    conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 5000")
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def transaction(
    conn: sqlite3.Connection, mode: str = "IMMEDIATE"
) -> Iterator[sqlite3.Connection]:
    # DEFERRED gives readers one consistent snapshot across statements
    if mode not in ("DEFERRED", "IMMEDIATE", "EXCLUSIVE"):
        raise ValueError(f"unknown transaction mode: {mode}")
    conn.execute(f"BEGIN {mode}")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


class Database:
    """Bounded pool of connections to one SQLite file.

    Readers run concurrently on separate connections; SQLite's own locking
    serializes writers.
    """

    def __init__(self, db_path: str, max_connections: int = 4, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.max_connections = max(1, max_connections)
        self._timeout = timeout
        self._idle: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue()
        self._lock = threading.Lock()
        self._opened = 0
        self._all: list[sqlite3.Connection] = []
        self._closed = False

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise RuntimeError("database is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            if self._opened < self.max_connections:
                conn = get_connection(self.db_path)
                self._opened += 1
                self._all.append(conn)
                return conn
        try:
            return self._idle.get(timeout=self._timeout)
        except queue.Empty:
            raise TimeoutError(
                f"no database connection available after {self._timeout}s"
            ) from None

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        self._idle.put(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._acquire()
        try:
            yield conn
        finally:
            self._release(conn)

    @contextmanager
    def transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        with self.connection() as conn, transaction(conn, mode):
            yield conn

    def snapshot(self):
        return self.transaction("DEFERRED")

    def stats(self) -> dict:
        return {
            "open": self._opened,
            "idle": self._idle.qsize(),
            "max": self.max_connections,
        }

    def close(self) -> None:
        with self._lock:
            self._closed = True
            for conn in self._all:
                conn.close()
            self._all.clear()
            self._opened = 0

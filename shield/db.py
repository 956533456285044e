"""
SQLite plumbing shared by the nullifier ledger and the audit log.

Store URLs
----------
- ``memory:``               in-process structures, nothing persisted
- ``sqlite:///:memory:``    SQLite, private in-memory database
- ``sqlite:///path/to.db``  SQLite file (``sqlite:////abs/path.db`` for absolute paths)
- ``/path/to.db``           bare paths are treated as SQLite files

Connections run in autocommit mode; writers open ``BEGIN IMMEDIATE``
explicitly so the check-and-set of a nullifier is one transaction, even
across processes sharing the file. WAL lets readers proceed during a write.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from shield.errors import StoreError

DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "temp_store": "MEMORY",
    "busy_timeout": 5000,
}

MEMORY = "memory"
SQLITE = "sqlite"


@dataclass(frozen=True)
class StoreURL:
    scheme: str  # "memory" | "sqlite"
    path: str = ""

    @property
    def in_memory(self) -> bool:
        return self.scheme == MEMORY or self.path == ":memory:"


def parse_store_url(url: str) -> StoreURL:
    """Parse a store URL; raises StoreError on unknown schemes."""
    s = (url or "").strip()
    if s in ("memory", "memory:", "memory://"):
        return StoreURL(MEMORY)
    if s.startswith("sqlite:"):
        path = s[len("sqlite:///"):] if s.startswith("sqlite:///") else ""
        if not path:
            raise StoreError("sqlite URL has no path", ctx={"url": url})
        return StoreURL(SQLITE, path)
    if "://" in s or (s.endswith(":") and os.sep not in s):
        raise StoreError("unsupported store URL", ctx={"url": url})
    if not s:
        raise StoreError("empty store URL")
    return StoreURL(SQLITE, s)


def _apply_pragmas(conn: sqlite3.Connection, in_memory: bool) -> None:
    p = DEFAULT_PRAGMAS
    if not in_memory:
        conn.execute("PRAGMA journal_mode=%s" % p["journal_mode"])
    conn.execute("PRAGMA synchronous=%s" % p["synchronous"])
    conn.execute("PRAGMA temp_store=%s" % p["temp_store"])
    conn.execute("PRAGMA busy_timeout=%d" % int(p["busy_timeout"]))


def connect(path: str) -> sqlite3.Connection:
    in_memory = path == ":memory:"
    if not in_memory:
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
    try:
        conn = sqlite3.connect(
            path,
            isolation_level=None,  # autocommit; writers BEGIN explicitly
            check_same_thread=False,
            timeout=DEFAULT_PRAGMAS["busy_timeout"] / 1000.0,
        )
        _apply_pragmas(conn, in_memory)
    except sqlite3.Error as e:
        raise StoreError("cannot open sqlite database", ctx={"path": path}, cause=e) from e
    return conn


class SQLiteHandle:
    """
    One writer connection plus per-thread reader connections.

    A private ``:memory:`` database exists only on its own connection, so in
    that case readers share the writer connection under the same lock.
    """

    def __init__(self, path: str, schema: str) -> None:
        self.path = path
        self.in_memory = path == ":memory:"
        self._write_lock = threading.RLock()
        self._writer = connect(path)
        self._writer.executescript(schema)
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._closed = False

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = connect(self.path)
            self._local.conn = conn
            with self._write_lock:
                self._readers.append(conn)
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StoreError("store is closed", ctx={"path": self.path})
        if self.in_memory:
            with self._write_lock:
                yield self._writer
        else:
            yield self._reader()

    @contextmanager
    def write(self) -> Iterator[sqlite3.Connection]:
        """Serialized ``BEGIN IMMEDIATE`` … ``COMMIT`` (rolled back on error)."""
        if self._closed:
            raise StoreError("store is closed", ctx={"path": self.path})
        with self._write_lock:
            conn = self._writer
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def close(self) -> None:
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            for c in self._readers:
                c.close()
            self._readers.clear()
            self._writer.close()


def sqlite_errors(msg: str, **ctx: object):
    """Map sqlite3 errors raised inside the block to StoreError."""
    return _SqliteErrors(msg, ctx)


class _SqliteErrors:
    def __init__(self, msg: str, ctx: dict) -> None:
        self.msg = msg
        self.ctx = ctx

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        if isinstance(exc, sqlite3.Error):
            raise StoreError(self.msg, ctx=self.ctx, cause=exc) from exc
        return None


__all__ = ["StoreURL", "parse_store_url", "connect", "SQLiteHandle", "sqlite_errors", "DEFAULT_PRAGMAS"]

"""
Nullifier ledger: the append-only set of spent nullifier hashes.

Only the dispatch gate writes to it. `try_record` is the single atomic
check-and-set; `is_used` is a plain read used for the cheap replay pre-check.
Entries are never removed, including when delivery fails afterwards.

Keys are normalized to 0x-prefixed, 64-nibble lowercase hex of the canonical
field element, so an int and its hex spelling name the same entry.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, Union, runtime_checkable

from shield.db import SQLiteHandle, parse_store_url, sqlite_errors
from shield.zk.field import require_canonical

NullifierLike = Union[int, str, bytes]


def nullifier_key(h: NullifierLike) -> str:
    """Canonical ledger key; raises FieldError for values outside the field."""
    x = require_canonical(h, "nullifierHash")
    return "0x" + x.to_bytes(32, "big").hex()


@runtime_checkable
class NullifierLedger(Protocol):
    def is_used(self, h: NullifierLike) -> bool: ...

    def try_record(self, h: NullifierLike) -> bool: ...

    def size(self) -> int: ...

    def close(self) -> None: ...


class MemoryLedger:
    """Set guarded by a mutex for writers; membership reads take no lock."""

    def __init__(self) -> None:
        self._used: set[str] = set()
        self._lock = threading.Lock()

    def is_used(self, h: NullifierLike) -> bool:
        return nullifier_key(h) in self._used

    def try_record(self, h: NullifierLike) -> bool:
        k = nullifier_key(h)
        with self._lock:
            if k in self._used:
                return False
            self._used.add(k)
            return True

    def size(self) -> int:
        return len(self._used)

    def close(self) -> None:
        return None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS nullifiers (
    h           TEXT PRIMARY KEY,
    recorded_at REAL NOT NULL
);
"""


class SQLiteLedger:
    """
    Durable ledger. The check-and-set is `INSERT OR IGNORE` inside
    `BEGIN IMMEDIATE`, so concurrent gates sharing one database file still
    record each nullifier exactly once.
    """

    def __init__(self, path: str) -> None:
        self._db = SQLiteHandle(path, _SCHEMA)

    @property
    def path(self) -> str:
        return self._db.path

    def is_used(self, h: NullifierLike) -> bool:
        k = nullifier_key(h)
        with sqlite_errors("ledger read failed"), self._db.read() as conn:
            row = conn.execute("SELECT 1 FROM nullifiers WHERE h = ? LIMIT 1", (k,)).fetchone()
        return row is not None

    def try_record(self, h: NullifierLike) -> bool:
        k = nullifier_key(h)
        with sqlite_errors("ledger write failed"), self._db.write() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO nullifiers(h, recorded_at) VALUES(?, ?)", (k, time.time())
            )
            return cur.rowcount == 1

    def size(self) -> int:
        with sqlite_errors("ledger read failed"), self._db.read() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM nullifiers").fetchone()
        return int(n)

    def close(self) -> None:
        self._db.close()


def open_ledger(url: str = "memory:") -> NullifierLedger:
    """`memory:`, `sqlite:///:memory:` or `sqlite:///path/ledger.db`."""
    u = parse_store_url(url)
    if u.scheme == "memory":
        return MemoryLedger()
    return SQLiteLedger(u.path)


__all__ = [
    "NullifierLike",
    "nullifier_key",
    "NullifierLedger",
    "MemoryLedger",
    "SQLiteLedger",
    "open_ledger",
]

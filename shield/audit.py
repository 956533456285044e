"""
Audit log of dispatch attempts that got past verification.

One `DispatchRecord` per message hash, written by the gate after the
nullifier is recorded, whether or not the transport delivered. Queries back
the gate's `is_message_recorded` / `is_message_verified` surface.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol, runtime_checkable

import msgspec

from shield.db import SQLiteHandle, parse_store_url, sqlite_errors
from shield.errors import ErrorCode, rethrow_as
from shield.types import DispatchRecord

_encoder = msgspec.json.Encoder()
_decoder = msgspec.json.Decoder(DispatchRecord)


@runtime_checkable
class AuditLog(Protocol):
    def put(self, record: DispatchRecord) -> None: ...

    def get(self, message_hash: str) -> Optional[DispatchRecord]: ...

    def get_by_message_id(self, message_id: str) -> Optional[DispatchRecord]: ...

    def has_message_id(self, message_id: str) -> bool: ...

    def has_message_hash(self, message_hash: str) -> bool: ...

    def by_nullifier(self, nullifier_hash: str) -> List[DispatchRecord]: ...

    def list_recent(self, limit: int = 50) -> List[DispatchRecord]: ...

    def close(self) -> None: ...


class MemoryAuditLog:
    def __init__(self) -> None:
        self._by_hash: Dict[str, DispatchRecord] = {}
        self._by_id: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, record: DispatchRecord) -> None:
        with self._lock:
            self._by_hash[record.message_hash] = record
            if record.message_id:
                self._by_id[record.message_id] = record.message_hash

    def get(self, message_hash: str) -> Optional[DispatchRecord]:
        with self._lock:
            return self._by_hash.get(message_hash)

    def get_by_message_id(self, message_id: str) -> Optional[DispatchRecord]:
        with self._lock:
            h = self._by_id.get(message_id)
            return self._by_hash.get(h) if h is not None else None

    def has_message_id(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._by_id

    def has_message_hash(self, message_hash: str) -> bool:
        with self._lock:
            return message_hash in self._by_hash

    def by_nullifier(self, nullifier_hash: str) -> List[DispatchRecord]:
        with self._lock:
            return [r for r in self._by_hash.values() if r.nullifier_hash == nullifier_hash]

    def list_recent(self, limit: int = 50) -> List[DispatchRecord]:
        with self._lock:
            recs = sorted(self._by_hash.values(), key=lambda r: r.created_at, reverse=True)
        return recs[: max(0, limit)]

    def close(self) -> None:
        return None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS dispatches (
    message_hash   TEXT PRIMARY KEY,
    message_id     TEXT,
    nullifier_hash TEXT NOT NULL,
    status         TEXT NOT NULL,
    created_at     REAL NOT NULL,
    body           BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS dispatches_message_id ON dispatches(message_id);
CREATE INDEX IF NOT EXISTS dispatches_nullifier ON dispatches(nullifier_hash);
CREATE INDEX IF NOT EXISTS dispatches_created ON dispatches(created_at);
"""


class SQLiteAuditLog:
    """Records stored as msgspec JSON blobs with the queried fields broken out."""

    def __init__(self, path: str) -> None:
        self._db = SQLiteHandle(path, _SCHEMA)

    def put(self, record: DispatchRecord) -> None:
        with sqlite_errors("audit write failed", message_hash=record.message_hash), self._db.write() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO dispatches"
                "(message_hash, message_id, nullifier_hash, status, created_at, body)"
                " VALUES(?, ?, ?, ?, ?, ?)",
                (
                    record.message_hash,
                    record.message_id,
                    record.nullifier_hash,
                    record.status,
                    record.created_at,
                    _encoder.encode(record),
                ),
            )

    def _one(self, sql: str, arg: str) -> Optional[DispatchRecord]:
        with sqlite_errors("audit read failed"), self._db.read() as conn:
            row = conn.execute(sql, (arg,)).fetchone()
        return self._decode(row[0]) if row is not None else None

    def _many(self, sql: str, args: tuple) -> List[DispatchRecord]:
        with sqlite_errors("audit read failed"), self._db.read() as conn:
            rows = conn.execute(sql, args).fetchall()
        return [self._decode(r[0]) for r in rows]

    @staticmethod
    def _decode(blob: bytes) -> DispatchRecord:
        with rethrow_as(ErrorCode.STORE, msg="corrupt audit row"):
            return _decoder.decode(blob)

    def get(self, message_hash: str) -> Optional[DispatchRecord]:
        return self._one("SELECT body FROM dispatches WHERE message_hash = ?", message_hash)

    def get_by_message_id(self, message_id: str) -> Optional[DispatchRecord]:
        return self._one("SELECT body FROM dispatches WHERE message_id = ? LIMIT 1", message_id)

    def has_message_id(self, message_id: str) -> bool:
        return self.get_by_message_id(message_id) is not None

    def has_message_hash(self, message_hash: str) -> bool:
        with sqlite_errors("audit read failed"), self._db.read() as conn:
            row = conn.execute(
                "SELECT 1 FROM dispatches WHERE message_hash = ? LIMIT 1", (message_hash,)
            ).fetchone()
        return row is not None

    def by_nullifier(self, nullifier_hash: str) -> List[DispatchRecord]:
        return self._many(
            "SELECT body FROM dispatches WHERE nullifier_hash = ? ORDER BY created_at",
            (nullifier_hash,),
        )

    def list_recent(self, limit: int = 50) -> List[DispatchRecord]:
        return self._many(
            "SELECT body FROM dispatches ORDER BY created_at DESC LIMIT ?", (max(0, int(limit)),)
        )

    def close(self) -> None:
        self._db.close()


def open_audit_log(url: str = "memory:") -> AuditLog:
    u = parse_store_url(url)
    if u.scheme == "memory":
        return MemoryAuditLog()
    return SQLiteAuditLog(u.path)


__all__ = ["AuditLog", "MemoryAuditLog", "SQLiteAuditLog", "open_audit_log"]

"""Key-value cache store addressed by ordered key paths.

Keys are tuples of ``str`` / ``int`` / ``bool`` segments.  Each key is encoded
into an order-preserving string so a prefix scan is a single range query and
only ever matches whole segments (``("congresses", 20, "HB1")`` never matches
``"HB10"``).  Values are stored as JSON.

The store is opened per top-level operation with :func:`open_kv` and is always
closed on the way out::

    async with open_kv(KV_PATH) as kv:
        await kv.set(("people", "byPersonId", "E001", "membership"), [20, 19])
        async for entry in kv.scan(("people", "byPersonId")):
            ...

Several writes become visible together through :meth:`KvStore.atomic`::

    batch = kv.atomic()
    batch.set(primary_key, record)
    batch.set(pointer_key, list(primary_key))
    await batch.commit()

Storage is SQLite in WAL mode, so concurrent requests each holding their own
connection see whole batches or nothing.  SQLite calls run in a worker
thread, so a writer waiting on the database lock never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

KeyPart = str | int | bool
Key = tuple

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    k TEXT PRIMARY KEY,
    key_json TEXT NOT NULL,
    value TEXT NOT NULL,
    expires_at REAL
)
"""

# First character of every encoded segment is one of these tags, all below
# _PREFIX_END, so ``prefix <= k < prefix + _PREFIX_END`` selects a subtree.
_TAG_BOOL = "b"
_TAG_INT = "n"
_TAG_STR = "s"
_SEP = "\x00"
_PREFIX_END = "\x7f"
_INT_OFFSET = 10**20


# ── Key encoding ─────────────────────────────────────────────────────────────


def _encode_part(part: KeyPart) -> str:
    if isinstance(part, bool):
        return f"{_TAG_BOOL}{int(part)}{_SEP}"
    if isinstance(part, int):
        if not -_INT_OFFSET < part < _INT_OFFSET:
            raise ValueError(f"Integer key part out of range: {part}")
        body = f"1{part:020d}" if part >= 0 else f"0{_INT_OFFSET + part:020d}"
        return f"{_TAG_INT}{body}{_SEP}"
    if isinstance(part, str):
        return f"{_TAG_STR}{part.replace(_SEP, _SEP + chr(0xFF))}{_SEP}"
    raise TypeError(f"Unsupported key part type: {type(part).__name__}")


def encode_key(key: Sequence[KeyPart]) -> str:
    """Order-preserving string encoding of a key path."""
    return "".join(_encode_part(p) for p in key)


@dataclass(frozen=True)
class KvEntry:
    key: Key
    value: Any


# ── Atomic batches ───────────────────────────────────────────────────────────


class AtomicBatch:
    """Queued writes committed in a single transaction."""

    def __init__(self, store: KvStore) -> None:
        self._store = store
        self._sets: list[tuple[Key, Any, float | None]] = []
        self._deletes: list[Key] = []

    def __len__(self) -> int:
        return len(self._sets) + len(self._deletes)

    def set(self, key: Sequence[KeyPart], value: Any, *, ttl: float | None = None) -> AtomicBatch:
        self._sets.append((tuple(key), value, ttl))
        return self

    def delete(self, key: Sequence[KeyPart]) -> AtomicBatch:
        self._deletes.append(tuple(key))
        return self

    async def commit(self) -> int:
        """Apply every queued write; returns the number of mutations."""
        count = len(self)
        if count:
            await self._store._write(self._sets, self._deletes)
        self._sets = []
        self._deletes = []
        return count


# ── Store ────────────────────────────────────────────────────────────────────

_SCAN_FIRST = (
    "SELECT k, key_json, value FROM kv WHERE k >= ? AND k < ?"
    " AND (expires_at IS NULL OR expires_at > ?) ORDER BY k LIMIT ?"
)
_SCAN_NEXT = (
    "SELECT k, key_json, value FROM kv WHERE k > ? AND k < ?"
    " AND (expires_at IS NULL OR expires_at > ?) ORDER BY k LIMIT ?"
)


class KvStore:
    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._conn = conn
        self._clock = clock
        self._closed = False
        # One statement at a time on this connection
        self._lock = asyncio.Lock()

    @classmethod
    def connect(
        cls,
        path: Path | str,
        *,
        clock: Callable[[], float] = time.time,
        timeout: float = 30.0,
    ) -> KvStore:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=timeout, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        with conn:
            conn.execute(_SCHEMA)
        return cls(conn, clock=clock)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._run(self._conn.close)

    # ── reads ─────────────────────────────────────────────────────────────

    def _get(self, key: Sequence[KeyPart]) -> Any | None:
        row = self._conn.execute(
            "SELECT value FROM kv WHERE k = ? AND (expires_at IS NULL OR expires_at > ?)",
            (encode_key(key), self._clock()),
        ).fetchone()
        return json.loads(row[0]) if row else None

    async def get(self, key: Sequence[KeyPart]) -> Any | None:
        """Return the value at *key*, or None when absent or expired."""
        return await self._run(self._get, key)

    def _scan_page(self, start: str, end: str, last: str | None, page_size: int) -> list:
        if last is None:
            params = (start, end, self._clock(), page_size)
            return self._conn.execute(_SCAN_FIRST, params).fetchall()
        return self._conn.execute(_SCAN_NEXT, (last, end, self._clock(), page_size)).fetchall()

    async def scan(
        self,
        prefix: Sequence[KeyPart] = (),
        *,
        page_size: int = 256,
    ) -> AsyncIterator[KvEntry]:
        """Yield every live entry under *prefix* in key order.

        Reads in key-ordered pages, resuming after the last key seen, so the
        iteration holds no cursor open between yields.
        """
        start = encode_key(prefix)
        end = start + _PREFIX_END
        last: str | None = None
        while True:
            rows = await self._run(self._scan_page, start, end, last, page_size)
            for _k, key_json, value in rows:
                yield KvEntry(key=tuple(json.loads(key_json)), value=json.loads(value))
            if len(rows) < page_size:
                return
            last = rows[-1][0]

    def _count(self, prefix: Sequence[KeyPart]) -> int:
        start = encode_key(prefix)
        row = self._conn.execute(
            "SELECT COUNT(*) FROM kv WHERE k >= ? AND k < ?"
            " AND (expires_at IS NULL OR expires_at > ?)",
            (start, start + _PREFIX_END, self._clock()),
        ).fetchone()
        return int(row[0])

    async def count(self, prefix: Sequence[KeyPart] = ()) -> int:
        return await self._run(self._count, prefix)

    # ── writes ────────────────────────────────────────────────────────────

    async def set(self, key: Sequence[KeyPart], value: Any, *, ttl: float | None = None) -> None:
        await self._write([(tuple(key), value, ttl)], [])

    async def delete(self, key: Sequence[KeyPart]) -> None:
        await self._write([], [tuple(key)])

    def atomic(self) -> AtomicBatch:
        return AtomicBatch(self)

    def _purge_expired(self) -> int:
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
        return cur.rowcount

    async def purge_expired(self) -> int:
        """Delete expired entries; returns how many were removed."""
        removed = await self._run(self._purge_expired)
        if removed:
            LOGGER.info("Purged %d expired cache entries", removed)
        return removed

    async def _write(
        self,
        sets: Sequence[tuple[Key, Any, float | None]],
        deletes: Sequence[Key],
    ) -> None:
        if self._closed:
            raise RuntimeError("Cache store is closed")
        await self._run(self._apply, sets, deletes)

    def _apply(
        self,
        sets: Sequence[tuple[Key, Any, float | None]],
        deletes: Sequence[Key],
    ) -> None:
        now = self._clock()
        rows = [
            (
                encode_key(key),
                json.dumps(list(key)),
                json.dumps(value, ensure_ascii=False),
                now + ttl if ttl is not None else None,
            )
            for key, value, ttl in sets
        ]
        with self._conn:
            if deletes:
                self._conn.executemany(
                    "DELETE FROM kv WHERE k = ?", [(encode_key(k),) for k in deletes]
                )
            if rows:
                self._conn.executemany(
                    "INSERT OR REPLACE INTO kv (k, key_json, value, expires_at)"
                    " VALUES (?, ?, ?, ?)",
                    rows,
                )


@asynccontextmanager
async def open_kv(
    path: Path | str,
    *,
    clock: Callable[[], float] = time.time,
    timeout: float = 30.0,
) -> AsyncIterator[KvStore]:
    """Open the cache store for one operation and always release it."""
    store = await asyncio.to_thread(KvStore.connect, path, clock=clock, timeout=timeout)
    try:
        yield store
    finally:
        await store.close()

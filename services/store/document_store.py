"""Document store interface and the aiosqlite implementation with live snapshots.

Documents live under slash-separated collection paths. Every append assigns
an id and a strictly increasing server timestamp, then pushes a fresh full
snapshot to every channel subscribed to that path.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import uuid4

import aiosqlite

from utils.channel import Channel
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import PermissionDenied, StoreUnavailable

TIMESTAMP_FIELD = "createdAt"

# artifacts/<app_id>/users/<uid>/<collection>
_PATH_PATTERN = re.compile(r"^artifacts/[^/]+/users/[^/]+/[^/]+$")
_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

T = TypeVar("T")


@dataclass(frozen=True)
class StoredDocument:
    """One committed document as seen in a snapshot."""

    id: str
    data: Dict[str, Any]
    server_timestamp: float


@dataclass(frozen=True)
class AppendResult:
    id: str
    server_timestamp: float


class DocumentStore(abc.ABC):
    """Capability interface for the remote document store."""

    @abc.abstractmethod
    async def subscribe(self, path: str, order_field: str, direction: str) -> Channel[List[StoredDocument]]:
        """Open a snapshot stream for `path`; the current state is emitted first."""

    @abc.abstractmethod
    async def append(self, path: str, document: Dict[str, Any]) -> AppendResult:
        """Commit a new document under `path`."""


@dataclass
class _Listener:
    path: str
    order_field: str
    descending: bool
    channel: Channel[List[StoredDocument]]


class SqliteDocumentStore(DocumentStore):
    """DocumentStore persisted in the DOCUMENT table.

    Append and fan-out run under one lock, as do subscription and its
    initial snapshot, so every subscriber sees commits in commit order.
    """

    def __init__(
        self,
        db_initializer: AsyncDatabaseInitializer,
        *,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._db = db_initializer
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._listeners: Dict[str, List[_Listener]] = {}
        self._last_timestamp: Optional[float] = None

    @staticmethod
    def validate_path(path: str) -> None:
        if not _PATH_PATTERN.match(path or ""):
            raise PermissionDenied(f"Path {path!r} is outside the per-user partition.")

    async def subscribe(self, path: str, order_field: str = TIMESTAMP_FIELD, direction: str = "desc") -> Channel[List[StoredDocument]]:
        self.validate_path(path)
        if not _FIELD_PATTERN.match(order_field):
            raise ValueError(f"Invalid order field: {order_field!r}")
        if direction not in ("asc", "desc"):
            raise ValueError("direction must be 'asc' or 'desc'")

        async with self._lock:
            listener: Optional[_Listener] = None
            channel: Channel[List[StoredDocument]] = Channel(on_close=lambda _ch: self._drop_listener(listener))
            listener = _Listener(path, order_field, direction == "desc", channel)
            snapshot = await self._retrying(lambda: self._snapshot(listener))
            channel.publish(snapshot)
            self._listeners.setdefault(path, []).append(listener)
        return channel

    def _drop_listener(self, listener: _Listener) -> None:
        listeners = self._listeners.get(listener.path, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(listener.path, None)

    async def append(self, path: str, document: Dict[str, Any]) -> AppendResult:
        self.validate_path(path)
        data = {k: v for k, v in document.items() if k not in ("id", TIMESTAMP_FIELD)}
        encoded = json.dumps(data)

        async with self._lock:
            doc_id = uuid4().hex
            timestamp = await self._next_timestamp()
            await self._retrying(lambda: self._insert(doc_id, path, encoded, timestamp))
            self._last_timestamp = timestamp
            await self._notify(path)
        return AppendResult(id=doc_id, server_timestamp=timestamp)

    async def _next_timestamp(self) -> float:
        if self._last_timestamp is None:
            self._last_timestamp = await self._retrying(self._max_timestamp)
        now = time.time()
        if now <= self._last_timestamp:
            now = self._last_timestamp + 1e-6
        return now

    async def _max_timestamp(self) -> float:
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT MAX(created_at) FROM DOCUMENT")
            row = await cur.fetchone()
        return float(row[0]) if row and row[0] is not None else 0.0

    async def _insert(self, doc_id: str, path: str, encoded: str, timestamp: float) -> None:
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO DOCUMENT (id, path, data, created_at) VALUES (?, ?, ?, ?)",
                (doc_id, path, encoded, timestamp),
            )
            await conn.commit()

    async def _notify(self, path: str) -> None:
        for listener in list(self._listeners.get(path, [])):
            try:
                snapshot = await self._retrying(lambda: self._snapshot(listener))
            except StoreUnavailable as exc:
                logging.error("Snapshot delivery for %s failed: %s", path, exc)
                listener.channel.fail(exc)
                continue
            listener.channel.publish(snapshot)

    async def _snapshot(self, listener: _Listener) -> List[StoredDocument]:
        direction = "DESC" if listener.descending else "ASC"
        if listener.order_field == TIMESTAMP_FIELD:
            order_expr = "created_at"
            params: tuple = (listener.path,)
        else:
            order_expr = "json_extract(data, ?)"
            params = (f"$.{listener.order_field}", listener.path)
        sql = (
            f"SELECT id, data, created_at, {order_expr} AS sort_key FROM DOCUMENT "
            f"WHERE path = ? ORDER BY sort_key {direction}, id ASC"
        )
        async with self._db.connection() as conn:
            cur = await conn.execute(sql, params)
            rows = await cur.fetchall()
        return [StoredDocument(id=r[0], data=json.loads(r[1]), server_timestamp=float(r[2])) for r in rows]

    async def _retrying(self, operation: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await operation()
            except (aiosqlite.Error, OSError) as exc:
                if attempt >= self._max_attempts:
                    raise StoreUnavailable(f"Document store unavailable: {exc}") from exc
                logging.warning("Document store attempt %d failed: %s", attempt, exc)
                await self._sleep(0.1 * attempt)
        raise StoreUnavailable("Document store unavailable.")

    async def close(self) -> None:
        """Close every open subscription channel."""
        for listeners in list(self._listeners.values()):
            for listener in list(listeners):
                listener.channel.close()
        self._listeners.clear()

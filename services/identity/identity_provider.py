"""Identity provider interface and its SQLite-backed implementation.

The provider issues credentials (token exchange or anonymous sign-in) and
publishes invalidation events, one uid per event, on cancelable channels.
"""

from __future__ import annotations

import abc
import logging
import secrets
import time
from typing import List, Optional
from uuid import uuid4

import aiosqlite

from models.session_models import Credential
from utils.channel import Channel
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import AuthFailure


class IdentityProvider(abc.ABC):
    """Capability interface the bootstrap signs in through."""

    @abc.abstractmethod
    async def exchange_token(self, token: str) -> Credential:
        """Exchange a previously issued token for a credential."""

    @abc.abstractmethod
    async def create_anonymous(self) -> Credential:
        """Create a fresh anonymous identity."""

    @abc.abstractmethod
    def invalidations(self) -> Channel[str]:
        """Return a channel yielding the uid of every invalidated identity."""


class SqliteIdentityProvider(IdentityProvider):
    """Identity provider storing identities in the IDENTITY table."""

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer
        self._listeners: List[Channel[str]] = []

    async def exchange_token(self, token: str) -> Credential:
        if not token:
            raise AuthFailure("Credential token is empty.")
        try:
            async with self._db.connection() as conn:
                cur = await conn.execute(
                    "SELECT uid, anonymous FROM IDENTITY WHERE token = ? AND revoked = 0",
                    (token,),
                )
                row = await cur.fetchone()
        except aiosqlite.Error as exc:
            raise AuthFailure(f"Identity store error during token exchange: {exc}") from exc
        if row is None:
            raise AuthFailure("Credential token is invalid or has been revoked.")
        return Credential(uid=row[0], anonymous=bool(row[1]), token=token)

    async def create_anonymous(self) -> Credential:
        uid = uuid4().hex
        try:
            async with self._db.connection() as conn:
                await conn.execute(
                    "INSERT INTO IDENTITY (uid, token, anonymous, revoked, created_at) VALUES (?, NULL, 1, 0, ?)",
                    (uid, time.time()),
                )
                await conn.commit()
        except aiosqlite.Error as exc:
            raise AuthFailure(f"Identity store error during anonymous sign-in: {exc}") from exc
        return Credential(uid=uid, anonymous=True)

    async def issue_token(self, uid: Optional[str] = None) -> str:
        """Create (or re-key) a non-anonymous identity and return its token.

        Args:
            uid: Existing or desired uid. A new one is generated when omitted.
        """
        uid = uid or uuid4().hex
        token = secrets.token_urlsafe(32)
        async with self._db.connection() as conn:
            await conn.execute(
                """
                INSERT INTO IDENTITY (uid, token, anonymous, revoked, created_at)
                VALUES (?, ?, 0, 0, ?)
                ON CONFLICT(uid) DO UPDATE SET token = excluded.token, revoked = 0
                """,
                (uid, token, time.time()),
            )
            await conn.commit()
        return token

    async def revoke(self, uid: str) -> bool:
        """Revoke an identity and notify listeners. Returns True if a row changed."""
        async with self._db.connection() as conn:
            await conn.execute("UPDATE IDENTITY SET revoked = 1 WHERE uid = ? AND revoked = 0", (uid,))
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            changed = await cur.fetchone()
        revoked = bool(changed and changed[0] > 0)
        if revoked:
            logging.warning("Identity %s revoked; notifying %d listener(s).", uid, len(self._listeners))
            for channel in list(self._listeners):
                channel.publish(uid)
        return revoked

    def invalidations(self) -> Channel[str]:
        channel: Channel[str] = Channel(on_close=self._listeners.remove)
        self._listeners.append(channel)
        return channel

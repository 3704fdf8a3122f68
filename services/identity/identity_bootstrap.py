"""Establish one authenticated identity per process before any data operation."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from models.session_models import Credential, Identity, RetrievalState
from services.identity.identity_provider import IdentityProvider
from utils.channel import Channel
from utils.errors import AuthFailure, NotReady


class IdentityBootstrap:
    """Run the sign-in attempts in order and keep the resulting identity.

    Attempts are an ordered list evaluated until the first success: the
    configured token exchange (when a token is present), then anonymous
    sign-in. Concurrent `establish()` calls share one in-flight attempt.
    """

    def __init__(self, provider: IdentityProvider, initial_token: Optional[str] = None) -> None:
        if provider is None:
            raise ValueError("Identity provider must be provided.")
        self.provider = provider
        self.initial_token = initial_token
        self.state = RetrievalState.BOOTSTRAPPING
        self.identity: Optional[Identity] = None
        self.error: Optional[str] = None
        self._pending: Optional[asyncio.Task] = None
        self._invalidations: Optional[Channel[str]] = None
        self._listener: Optional[asyncio.Task] = None
        self._change_channels: List[Channel[Identity]] = []

    def _attempts(self) -> List[Tuple[str, Callable[[], Awaitable[Credential]]]]:
        attempts: List[Tuple[str, Callable[[], Awaitable[Credential]]]] = []
        if self.initial_token:
            token = self.initial_token
            attempts.append(("token exchange", lambda: self.provider.exchange_token(token)))
        attempts.append(("anonymous sign-in", self.provider.create_anonymous))
        return attempts

    async def establish(self) -> Identity:
        """Return the process identity, signing in first if needed.

        Raises:
            AuthFailure: When every attempt failed; state is then ERROR.
        """
        if self.state is RetrievalState.READY and self.identity is not None:
            return self.identity
        if self._pending is None or self._pending.done():
            self.state = RetrievalState.BOOTSTRAPPING
            self._pending = asyncio.ensure_future(self._run_attempts())
        return await asyncio.shield(self._pending)

    async def _run_attempts(self) -> Identity:
        last_error: Optional[BaseException] = None
        for name, attempt in self._attempts():
            try:
                credential = await attempt()
            except Exception as exc:
                logging.error("Identity bootstrap: %s failed: %s", name, exc)
                last_error = exc
                continue
            self.identity = Identity.from_credential(credential)
            self.error = None
            self.state = RetrievalState.READY
            logging.info("Identity bootstrap: %s succeeded for uid %s", name, self.identity.uid)
            for channel in list(self._change_channels):
                channel.publish(self.identity)
            return self.identity

        self.identity = None
        self.state = RetrievalState.ERROR
        self.error = f"Authentication failed: {last_error}"
        raise AuthFailure(self.error) from last_error

    def require_identity(self) -> Identity:
        """Return the identity or raise NotReady while bootstrap is incomplete."""
        if self.state is not RetrievalState.READY or self.identity is None:
            raise NotReady(f"Identity is not ready (state: {self.state.value}).")
        return self.identity

    def identity_changes(self) -> Channel[Identity]:
        """Open a channel that receives every identity the bootstrap settles on.

        Closing the channel unregisters it. All channels end on `close()`.
        """
        channel: Channel[Identity] = Channel(on_close=self._change_channels.remove)
        self._change_channels.append(channel)
        return channel

    def start(self) -> None:
        """Begin listening for identity invalidation events."""
        if self._listener is not None:
            return
        self._invalidations = self.provider.invalidations()
        self._listener = asyncio.ensure_future(self._watch_invalidations(self._invalidations))

    async def _watch_invalidations(self, channel: Channel[str]) -> None:
        async for uid in channel:
            if self.identity is None or uid != self.identity.uid:
                continue
            logging.warning("Identity %s was invalidated; bootstrapping again.", uid)
            self.identity = None
            self.state = RetrievalState.BOOTSTRAPPING
            self._pending = None
            try:
                await self.establish()
            except AuthFailure as exc:
                logging.error("Re-bootstrap after invalidation failed: %s", exc)

    async def close(self) -> None:
        """Cancel the invalidation listener and end every open channel."""
        for channel in list(self._change_channels):
            channel.close()
        if self._invalidations is not None:
            self._invalidations.close()
            self._invalidations = None
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass

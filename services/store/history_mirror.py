"""Local ordered history fed by a collection subscription."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Tuple

from models.analysis_record import AnalysisRecord
from models.session_models import Identity
from services.identity.identity_bootstrap import IdentityBootstrap
from services.store.synced_collection import CollectionSubscription, SyncedCollection
from utils.channel import Channel
from utils.errors import AnalysisError

HISTORY_LOAD_ERROR = "Failed to load analysis history."


class HistoryMirror:
	"""Keep `records` equal to the latest snapshot of one identity's collection.

	The subscription task is the only writer of `records`; everything else
	reads it. With `follow()` the mirror moves to whatever identity the
	bootstrap settles on next, e.g. after an invalidation.
	"""

	def __init__(self, collection: SyncedCollection) -> None:
		self.collection = collection
		self.records: Tuple[AnalysisRecord, ...] = ()
		self.version = 0
		self.error: Optional[str] = None
		self.identity: Optional[Identity] = None
		self._subscription: Optional[CollectionSubscription] = None
		self._task: Optional[asyncio.Task] = None
		self._changed = asyncio.Condition()
		self._starting = asyncio.Lock()
		self._identity_changes: Optional[Channel[Identity]] = None
		self._follower: Optional[asyncio.Task] = None

	async def start(self, identity: Identity) -> None:
		"""Subscribe for `identity`, replacing any running subscription."""
		async with self._starting:
			await self.stop()
			self.identity = identity
			self.error = None
			self._subscription = await self.collection.subscribe(identity)
			# The first snapshot is the current state; apply it before returning.
			await self._apply(tuple(await self._subscription.next()))
			self._task = asyncio.ensure_future(self._consume(self._subscription))

	def follow(self, bootstrap: IdentityBootstrap) -> None:
		"""Restart the subscription whenever `bootstrap` settles on another identity."""
		if self._follower is not None:
			return
		self._identity_changes = bootstrap.identity_changes()
		self._follower = asyncio.ensure_future(self._follow(self._identity_changes))

	async def _follow(self, changes: Channel[Identity]) -> None:
		async for identity in changes:
			if self.identity is not None and identity.uid == self.identity.uid and self.error is None:
				continue
			logging.info("History now follows uid %s.", identity.uid)
			try:
				await self.start(identity)
			except AnalysisError as exc:
				logging.error("History subscription for uid %s could not start: %s", identity.uid, exc)
				await self._fail()

	async def _consume(self, subscription: CollectionSubscription) -> None:
		try:
			async for snapshot in subscription:
				await self._apply(tuple(snapshot))
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			logging.error("History subscription for uid %s failed: %s", subscription.identity.uid, exc)
			await self._fail()

	async def _apply(self, snapshot: Tuple[AnalysisRecord, ...]) -> None:
		async with self._changed:
			self.records = snapshot
			self.version += 1
			self._changed.notify_all()

	async def _fail(self) -> None:
		async with self._changed:
			self.error = HISTORY_LOAD_ERROR
			self._changed.notify_all()

	async def wait_for(
		self,
		predicate: Callable[[Tuple[AnalysisRecord, ...]], bool],
		timeout: Optional[float] = None,
	) -> Tuple[AnalysisRecord, ...]:
		"""Wait until `predicate(records)` holds and return the records."""
		async def _wait() -> Tuple[AnalysisRecord, ...]:
			async with self._changed:
				await self._changed.wait_for(lambda: self.error is not None or predicate(self.records))
				return self.records

		return await asyncio.wait_for(_wait(), timeout)

	async def stop(self) -> None:
		"""Cancel the subscription and its consumer task."""
		subscription, self._subscription = self._subscription, None
		if subscription is not None:
			subscription.cancel()
		task, self._task = self._task, None
		if task is not None:
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass

	async def close(self) -> None:
		"""Stop following the bootstrap, then stop the subscription."""
		if self._identity_changes is not None:
			self._identity_changes.close()
			self._identity_changes = None
		follower, self._follower = self._follower, None
		if follower is not None:
			follower.cancel()
			try:
				await follower
			except asyncio.CancelledError:
				pass
		await self.stop()

	async def wait_newer(self, version: int, timeout: Optional[float] = None) -> Tuple[int, Tuple[AnalysisRecord, ...]]:
		"""Wait for a snapshot newer than `version`; return `(version, records)`."""
		async def _wait() -> Tuple[int, Tuple[AnalysisRecord, ...]]:
			async with self._changed:
				await self._changed.wait_for(lambda: self.error is not None or self.version > version)
				return self.version, self.records

		return await asyncio.wait_for(_wait(), timeout)

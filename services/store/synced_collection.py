"""Identity-scoped view of the analysis collection, live-updated from the store."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from models.analysis_record import AnalysisRecord
from models.session_models import Identity
from services.identity.identity_bootstrap import IdentityBootstrap
from services.store.document_store import TIMESTAMP_FIELD, DocumentStore, StoredDocument
from utils.channel import Channel
from utils.errors import NotReady, PermissionDenied


class CollectionSubscription:
    """Async iterator of full, ordered snapshots for one identity.

    Iteration ends when the subscription is cancelled (directly or by a newer
    subscription for the same identity) and raises when the stream fails.
    """

    def __init__(self, identity: Identity, channel: Channel[List[StoredDocument]]) -> None:
        self.identity = identity
        self._channel = channel

    @property
    def cancelled(self) -> bool:
        return self._channel.closed

    def cancel(self) -> None:
        self._channel.close()

    def __aiter__(self) -> "CollectionSubscription":
        return self

    async def __anext__(self) -> List[AnalysisRecord]:
        documents = await self._channel.__anext__()
        return [AnalysisRecord.from_document(d.id, d.data, d.server_timestamp) for d in documents]

    async def next(self, timeout: Optional[float] = None) -> List[AnalysisRecord]:
        documents = await self._channel.next(timeout)
        return [AnalysisRecord.from_document(d.id, d.data, d.server_timestamp) for d in documents]


class SyncedCollection:
    """Read and write an identity's analyses under the per-user partition."""

    def __init__(
        self,
        store: DocumentStore,
        bootstrap: IdentityBootstrap,
        *,
        app_id: str,
        collection_name: str = "analyses",
    ) -> None:
        self.store = store
        self.bootstrap = bootstrap
        self.app_id = app_id
        self.collection_name = collection_name
        self._active: Dict[str, CollectionSubscription] = {}

    def collection_path(self, identity: Identity) -> str:
        return f"artifacts/{self.app_id}/users/{identity.uid}/{self.collection_name}"

    def _check_scope(self, identity: Identity) -> None:
        current = self.bootstrap.require_identity()
        if identity is None or identity.uid != current.uid:
            raise PermissionDenied("Identity does not own this collection.")

    async def subscribe(self, identity: Identity) -> CollectionSubscription:
        """Open a snapshot stream, cancelling any previous one for this identity.

        Raises:
            NotReady: If the bootstrap has not reached READY.
            PermissionDenied: If `identity` is not the bootstrap's identity.
        """
        self._check_scope(identity)
        self._active = {uid: active for uid, active in self._active.items() if not active.cancelled}
        previous = self._active.pop(identity.uid, None)
        if previous is not None:
            previous.cancel()
        channel = await self.store.subscribe(self.collection_path(identity), TIMESTAMP_FIELD, "desc")
        subscription = CollectionSubscription(identity, channel)
        self._active[identity.uid] = subscription
        return subscription

    async def write(self, identity: Identity, record: AnalysisRecord) -> AnalysisRecord:
        """Append `record` and return a copy carrying its id and server timestamp.

        Raises:
            StoreUnavailable: The store could not be reached.
            PermissionDenied: Identity scoping was violated, or the identity
                was invalidated and the bootstrap has not settled again.
        """
        try:
            self._check_scope(identity)
        except NotReady as exc:
            raise PermissionDenied(f"Write rejected: {exc}") from exc
        result = await self.store.append(self.collection_path(identity), record.to_document())
        logging.info("Analysis %s saved for uid %s.", result.id, identity.uid)
        return AnalysisRecord.from_document(result.id, record.to_document(), result.server_timestamp)

    def cancel_all(self) -> None:
        for subscription in list(self._active.values()):
            subscription.cancel()
        self._active.clear()

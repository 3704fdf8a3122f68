import asyncio

import aiosqlite
import pytest

from fakes import FakeIdentityProvider, RecordingSleep, make_png
from models.analysis_record import AnalysisRecord
from models.session_models import Identity, RetrievalState
from services.identity.identity_bootstrap import IdentityBootstrap
from services.store.document_store import SqliteDocumentStore
from services.store.history_mirror import HISTORY_LOAD_ERROR, HistoryMirror
from services.store.synced_collection import SyncedCollection
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import NotReady, PermissionDenied, StoreUnavailable
from utils.media_validation import to_data_uri


def _record(name: str) -> AnalysisRecord:
    return AnalysisRecord(
        id=None,
        scientific_name=name,
        common_name=f"{name} common",
        summary="summary",
        ecological_role="tolerant",
        classification={"order": "Diptera", "family": None, "class": "Insecta"},
        image_url=to_data_uri(make_png(), "image/png"),
        mime_type="image/png",
    )


async def _collection(tmp_path, token="abc"):
    bootstrap = IdentityBootstrap(FakeIdentityProvider(), token)
    identity = await bootstrap.establish()
    store = SqliteDocumentStore(AsyncDatabaseInitializer(tmp_path))
    return SyncedCollection(store, bootstrap, app_id="macro"), identity


def test_collection_path_partitions_by_identity(tmp_path):
    collection, identity = asyncio.run(_collection(tmp_path))
    assert collection.collection_path(identity) == "artifacts/macro/users/user-abc/analyses"


def test_written_record_round_trips_through_subscription(tmp_path):
    async def scenario():
        collection, identity = await _collection(tmp_path)
        written = await collection.write(identity, _record("Chironomus"))
        subscription = await collection.subscribe(identity)
        snapshot = await subscription.next(timeout=1)
        subscription.cancel()
        return written, snapshot

    written, snapshot = asyncio.run(scenario())
    original = _record("Chironomus")
    assert written.id is not None
    assert written.created_at is not None
    assert snapshot == [written]
    observed = snapshot[0]
    assert observed.to_document() == original.to_document()


def test_snapshots_are_newest_first_and_preserve_commit_order(tmp_path):
    async def scenario():
        collection, identity = await _collection(tmp_path)
        subscription = await collection.subscribe(identity)
        snapshots = [await subscription.next(timeout=1)]
        await collection.write(identity, _record("W1"))
        await collection.write(identity, _record("W2"))
        snapshots.append(await subscription.next(timeout=1))
        snapshots.append(await subscription.next(timeout=1))
        subscription.cancel()
        return snapshots

    snapshots = asyncio.run(scenario())
    names = [[r.scientific_name for r in snapshot] for snapshot in snapshots]
    assert names == [[], ["W1"], ["W2", "W1"]]


def test_resubscribe_yields_identical_first_snapshot_and_cancels_prior(tmp_path):
    async def scenario():
        collection, identity = await _collection(tmp_path)
        await collection.write(identity, _record("A"))
        await collection.write(identity, _record("B"))
        first = await collection.subscribe(identity)
        second = await collection.subscribe(identity)
        first_snapshot = await first.next(timeout=1)
        second_snapshot = await second.next(timeout=1)
        with pytest.raises(StopAsyncIteration):
            await first.next(timeout=1)
        assert first.cancelled and not second.cancelled
        second.cancel()
        return first_snapshot, second_snapshot

    first_snapshot, second_snapshot = asyncio.run(scenario())
    assert first_snapshot == second_snapshot
    assert [r.scientific_name for r in first_snapshot] == ["B", "A"]


def test_other_identity_is_denied(tmp_path):
    async def scenario():
        collection, _identity = await _collection(tmp_path)
        intruder = Identity(uid="someone-else")
        with pytest.raises(PermissionDenied):
            await collection.write(intruder, _record("X"))
        with pytest.raises(PermissionDenied):
            await collection.subscribe(intruder)

    asyncio.run(scenario())


def test_operations_before_bootstrap_are_not_ready(tmp_path):
    async def scenario():
        bootstrap = IdentityBootstrap(FakeIdentityProvider())
        store = SqliteDocumentStore(AsyncDatabaseInitializer(tmp_path))
        collection = SyncedCollection(store, bootstrap, app_id="macro")
        with pytest.raises(NotReady):
            await collection.subscribe(Identity(uid="anon-1"))

    asyncio.run(scenario())


def test_history_mirror_tracks_latest_snapshot(tmp_path):
    async def scenario():
        collection, identity = await _collection(tmp_path)
        mirror = HistoryMirror(collection)
        await mirror.start(identity)
        await collection.write(identity, _record("Hydropsyche"))
        records = await mirror.wait_for(lambda rs: len(rs) == 1, timeout=1)
        await mirror.stop()
        return records, mirror

    records, mirror = asyncio.run(scenario())
    assert records[0].scientific_name == "Hydropsyche"
    assert mirror.error is None
    assert mirror.version >= 2


async def _failing_snapshots(*args):
    raise aiosqlite.OperationalError("disk I/O error")


def test_failed_snapshot_delivery_ends_subscription_with_store_unavailable(tmp_path, monkeypatch):
    sleep = RecordingSleep()

    async def scenario():
        bootstrap = IdentityBootstrap(FakeIdentityProvider())
        identity = await bootstrap.establish()
        store = SqliteDocumentStore(AsyncDatabaseInitializer(tmp_path), sleep=sleep)
        collection = SyncedCollection(store, bootstrap, app_id="macro")
        subscription = await collection.subscribe(identity)
        assert await subscription.next(timeout=1) == []
        monkeypatch.setattr(store, "_snapshot", _failing_snapshots)
        written = await collection.write(identity, _record("Asellus"))
        with pytest.raises(StoreUnavailable):
            await subscription.next(timeout=1)
        return written, subscription

    written, subscription = asyncio.run(scenario())
    assert written.id is not None
    assert subscription.cancelled
    assert sleep.delays == [0.1, 0.2]


def test_history_mirror_reports_failed_snapshot_delivery(tmp_path, monkeypatch):
    async def scenario():
        bootstrap = IdentityBootstrap(FakeIdentityProvider())
        identity = await bootstrap.establish()
        store = SqliteDocumentStore(AsyncDatabaseInitializer(tmp_path), sleep=RecordingSleep())
        collection = SyncedCollection(store, bootstrap, app_id="macro")
        mirror = HistoryMirror(collection)
        await mirror.start(identity)
        monkeypatch.setattr(store, "_snapshot", _failing_snapshots)
        await collection.write(identity, _record("Gammarus"))
        records = await mirror.wait_for(lambda rs: False, timeout=1)
        await mirror.stop()
        return records, mirror

    records, mirror = asyncio.run(scenario())
    assert records == ()
    assert mirror.error == HISTORY_LOAD_ERROR


def test_write_during_rebootstrap_is_denied(tmp_path):
    async def scenario():
        collection, identity = await _collection(tmp_path)
        collection.bootstrap.state = RetrievalState.BOOTSTRAPPING
        collection.bootstrap.identity = None
        with pytest.raises(PermissionDenied) as excinfo:
            await collection.write(identity, _record("Simulium"))
        return excinfo.value

    error = asyncio.run(scenario())
    assert isinstance(error.__cause__, NotReady)


def test_history_mirror_follows_identity_after_invalidation(tmp_path):
    provider = FakeIdentityProvider()

    async def scenario():
        bootstrap = IdentityBootstrap(provider)
        bootstrap.start()
        first = await bootstrap.establish()
        store = SqliteDocumentStore(AsyncDatabaseInitializer(tmp_path))
        collection = SyncedCollection(store, bootstrap, app_id="macro")
        await collection.write(first, _record("Old"))
        mirror = HistoryMirror(collection)
        await mirror.start(first)
        mirror.follow(bootstrap)
        old_subscription = mirror._subscription
        provider.invalidate(first.uid)
        for _ in range(100):
            await asyncio.sleep(0.01)
            if mirror.identity is not None and mirror.identity.uid != first.uid:
                break
        second = bootstrap.require_identity()
        await collection.write(second, _record("New"))
        records = await mirror.wait_for(lambda rs: [r.scientific_name for r in rs] == ["New"], timeout=1)
        await mirror.close()
        await bootstrap.close()
        return mirror, old_subscription, records

    mirror, old_subscription, records = asyncio.run(scenario())
    assert mirror.identity.uid == "anon-2"
    assert old_subscription.cancelled
    assert [r.scientific_name for r in records] == ["New"]
    assert mirror.error is None

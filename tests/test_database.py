import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from database import COURSES, REVOKED_TOKENS, DocumentStore, object_id, to_public
from errors import TransientStoreError


class _UnreachableCollection:
    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("no servers available")

        return _fail


def test_to_public_renames_id() -> None:
    oid = ObjectId()
    assert to_public({"_id": oid, "name": "DSA"}) == {"id": str(oid), "name": "DSA"}
    assert to_public(None) is None


def test_object_id_rejects_malformed_ids() -> None:
    oid = ObjectId()
    assert object_id(str(oid)) == oid
    assert object_id("not-an-id") is None
    assert object_id(None) is None


def test_insert_stamps_created_at_and_overwrites_client_value(services) -> None:
    store = services.store
    doc = store.insert(COURSES, {"name": "DSA", "createdAt": "yesterday", "_id": "forged"})
    assert doc["id"] != "forged"
    assert doc["createdAt"] != "yesterday"
    assert store.get(COURSES, doc["id"])["name"] == "DSA"


def test_find_orders_newest_first(services) -> None:
    store = services.store
    for name in ["first", "second", "third"]:
        store.insert(COURSES, {"ownerId": "u1", "name": name})
    assert [d["name"] for d in store.find(COURSES, {"ownerId": "u1"})] == ["third", "second", "first"]


def test_collections_are_namespaced_by_app_id(services) -> None:
    services.store.insert(COURSES, {"ownerId": "u1", "name": "DSA"})
    assert "devstudy-test.users.courses" in services.store.ping()


def test_subscription_receives_initial_and_updated_snapshots(services) -> None:
    store = services.store
    snapshots = []
    subscription = store.subscribe(COURSES, {"ownerId": "u1"}, snapshots.append)
    store.insert(COURSES, {"ownerId": "u1", "name": "DSA"})
    store.insert(COURSES, {"ownerId": "u2", "name": "Other"})
    assert [len(s) for s in snapshots] == [0, 1, 1]

    subscription.unsubscribe()
    subscription.unsubscribe()
    store.insert(COURSES, {"ownerId": "u1", "name": "OS"})
    assert len(snapshots) == 3


def test_subscription_context_manager_unsubscribes(services) -> None:
    store = services.store
    snapshots = []
    with store.subscribe(COURSES, {}, snapshots.append):
        store.insert(COURSES, {"ownerId": "u1", "name": "DSA"})
    store.insert(COURSES, {"ownerId": "u1", "name": "OS"})
    assert len(snapshots) == 2


def test_failing_live_query_degrades_to_empty_snapshot(services, monkeypatch) -> None:
    store = services.store
    store.insert(COURSES, {"ownerId": "u1", "name": "DSA"})
    snapshots = []
    store.subscribe(COURSES, {"ownerId": "u1"}, snapshots.append)
    assert len(snapshots[0]) == 1

    def _broken_find(*args, **kwargs):
        raise TransientStoreError("down")

    monkeypatch.setattr(store, "find", _broken_find)
    store._notify(COURSES)  # noqa: SLF001
    assert snapshots[-1] == []


def test_count_subscription_delivers_counts_without_fetching(services, monkeypatch) -> None:
    store = services.store
    store.insert(COURSES, {"ownerId": "u1", "name": "DSA"})

    def _no_fetch(*args, **kwargs):
        raise AssertionError("count subscriptions must not load documents")

    monkeypatch.setattr(store, "find", _no_fetch)
    counts = []
    with store.subscribe_count(COURSES, {"ownerId": "u1"}, counts.append):
        store.insert(COURSES, {"ownerId": "u1", "name": "OS"})
        store.insert(COURSES, {"ownerId": "u2", "name": "Other"})
    assert counts == [1, 2, 2]


def test_failing_count_subscription_degrades_to_zero(services, monkeypatch) -> None:
    store = services.store
    store.insert(COURSES, {"ownerId": "u1", "name": "DSA"})
    counts = []
    store.subscribe_count(COURSES, {"ownerId": "u1"}, counts.append)

    def _broken_count(*args, **kwargs):
        raise TransientStoreError("down")

    monkeypatch.setattr(store, "count", _broken_count)
    store._notify(COURSES)  # noqa: SLF001
    assert counts == [1, 0]


def test_revoked_tokens_expire_with_the_token(services) -> None:
    indexes = services.store.collection(REVOKED_TOKENS).index_information()
    ttl = [spec for spec in indexes.values() if "expireAfterSeconds" in spec]
    assert len(ttl) == 1
    assert ttl[0]["key"] == [("expiresAt", 1)]
    assert ttl[0]["expireAfterSeconds"] == 0


def test_subscriptions_only_see_writes_from_their_own_store(services) -> None:
    other_worker = DocumentStore(services.store.db, "devstudy-test")
    snapshots = []
    services.store.subscribe(COURSES, {}, snapshots.append)

    other_worker.insert(COURSES, {"ownerId": "u1", "name": "DSA"})
    assert len(snapshots) == 1

    services.store.insert(COURSES, {"ownerId": "u1", "name": "OS"})
    assert [len(s) for s in snapshots] == [0, 2]


def test_store_errors_become_transient(services, monkeypatch) -> None:
    store = DocumentStore(services.store.db, "devstudy-test")
    monkeypatch.setattr(store, "collection", lambda name: _UnreachableCollection())
    with pytest.raises(TransientStoreError):
        store.find(COURSES, {})
    with pytest.raises(TransientStoreError):
        store.insert(COURSES, {"name": "DSA"})

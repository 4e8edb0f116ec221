"""
MongoDB access layer for DevStudy.

Every collection lives under a deployment namespace (``APP_ID``). Personal
content shares one collection per kind (``users.courses`` ...) partitioned by
the ``ownerId`` field; groups, shares and profiles are top-level collections.

Besides plain CRUD the store keeps live query subscriptions: each write
re-runs the queries subscribed to the written collection and hands every
subscriber a fresh full snapshot (or a fresh count, for count subscriptions).
Only writes made through this process's store are seen: with several
workers, each one notifies its own subscribers only.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from errors import TransientStoreError

logger = logging.getLogger(__name__)

# Shared collections
PROFILES = "userProfiles"
GROUPS = "groups"
GROUP_SHARED_COURSES = "groupSharedCourses"
SHARED_PROBLEMS = "sharedProblems"
ACCOUNTS = "accounts"
REVOKED_TOKENS = "revokedTokens"

# Per-user collections, partitioned by ownerId
COURSES = "users.courses"
TOPICS = "users.topics"
QUESTIONS = "users.questions"
SOLUTIONS = "users.solutions"
USER_COLLECTIONS = (COURSES, TOPICS, QUESTIONS, SOLUTIONS)

SortSpec = List[Tuple[str, int]]
Document = Dict[str, Any]
SnapshotCallback = Callable[[List[Document]], None]

NEWEST_FIRST: SortSpec = [("createdAt", DESCENDING), ("_id", DESCENDING)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: Any) -> Optional[ObjectId]:
    """Parse a store id, returning None for anything malformed."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def to_public(doc: Optional[Document]) -> Optional[Document]:
    if not doc:
        return doc
    d = {**doc}
    _id = d.pop("_id", None)
    if _id is not None:
        d["id"] = str(_id)
    return d


def connect(settings: Settings) -> Database:
    timeout_ms = int(settings.store_timeout_seconds * 1000)
    client: MongoClient = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=timeout_ms,
        connectTimeoutMS=timeout_ms,
        socketTimeoutMS=timeout_ms,
        tz_aware=True,
    )
    return client[settings.database_name]


class Subscription:
    """Handle for a live query. Call ``unsubscribe`` when the consumer goes away."""

    def __init__(self, store: "DocumentStore", collection: str, query: Document,
                 callback: Callable[[Any], None], sort: SortSpec, counting: bool = False):
        self.store = store
        self.collection = collection
        self.query = query
        self.callback = callback
        self.sort = sort
        self.counting = counting
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.store._detach(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class DocumentStore:
    def __init__(self, db: Database, namespace: str):
        self.db = db
        self.namespace = namespace
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def collection(self, name: str):
        return self.db[f"{self.namespace}.{name}"]

    @contextmanager
    def _guard(self, action: str, name: str) -> Iterator[None]:
        try:
            yield
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            logger.error("Store %s on %s failed: %s", action, name, e)
            raise TransientStoreError(f"Storage unavailable while trying to {action}. Please retry.") from e

    def ensure_indexes(self) -> None:
        with self._guard("create indexes", self.namespace):
            self.collection(GROUPS).create_index("inviteCode", unique=True)
            self.collection(GROUP_SHARED_COURSES).create_index("groupId")
            self.collection(SHARED_PROBLEMS).create_index([("recipientId", ASCENDING), ("status", ASCENDING)])
            self.collection(ACCOUNTS).create_index("email", unique=True)
            # Drop revocations once the token itself has expired
            self.collection(REVOKED_TOKENS).create_index("expiresAt", expireAfterSeconds=0)
            for name in USER_COLLECTIONS:
                self.collection(name).create_index([("ownerId", ASCENDING), ("createdAt", DESCENDING)])

    def ping(self) -> List[str]:
        with self._guard("list collections", self.namespace):
            return [n for n in self.db.list_collection_names() if n.startswith(f"{self.namespace}.")]

    # ----------------------- Reads -----------------------
    def get(self, name: str, doc_id: Any) -> Optional[Document]:
        oid = object_id(doc_id)
        if oid is None:
            return None
        return self.find_one(name, {"_id": oid})

    def find_one(self, name: str, query: Document) -> Optional[Document]:
        with self._guard("read", name):
            return to_public(self.collection(name).find_one(query))

    def find(self, name: str, query: Document, sort: Optional[SortSpec] = None, limit: int = 0) -> List[Document]:
        with self._guard("read", name):
            cursor = self.collection(name).find(query).sort(sort or NEWEST_FIRST)
            if limit:
                cursor = cursor.limit(limit)
            return [to_public(d) for d in cursor]

    def count(self, name: str, query: Document) -> int:
        with self._guard("count", name):
            return self.collection(name).count_documents(query)

    # ----------------------- Writes -----------------------
    def insert(self, name: str, data: Document, timestamp_field: str = "createdAt") -> Document:
        doc = {k: v for k, v in data.items() if k not in ("_id", "id")}
        if timestamp_field:
            doc[timestamp_field] = utcnow()
        with self._guard("save", name):
            result = self.collection(name).insert_one(doc)
        self._notify(name)
        return to_public({**doc, "_id": result.inserted_id})

    def upsert(self, name: str, doc_id: str, data: Document) -> Document:
        doc = {k: v for k, v in data.items() if k not in ("_id", "id")}
        with self._guard("save", name):
            self.collection(name).replace_one({"_id": doc_id}, doc, upsert=True)
        self._notify(name)
        return to_public({**doc, "_id": doc_id})

    def update_one(self, name: str, query: Document, update: Document) -> Optional[Document]:
        """Apply ``update`` to the first match atomically; None when nothing matched."""
        with self._guard("update", name):
            updated = self.collection(name).find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        if updated is not None:
            self._notify(name)
        return to_public(updated)

    def delete_one(self, name: str, query: Document) -> bool:
        with self._guard("delete", name):
            deleted = self.collection(name).delete_one(query).deleted_count
        if deleted:
            self._notify(name)
        return deleted > 0

    def delete_many(self, name: str, query: Document) -> int:
        with self._guard("delete", name):
            deleted = self.collection(name).delete_many(query).deleted_count
        if deleted:
            self._notify(name)
        return deleted

    # ----------------------- Live queries -----------------------
    def subscribe(self, name: str, query: Document, callback: SnapshotCallback,
                  sort: Optional[SortSpec] = None) -> Subscription:
        return self._attach(Subscription(self, name, query, callback, sort or NEWEST_FIRST))

    def subscribe_count(self, name: str, query: Document, callback: Callable[[int], None]) -> Subscription:
        """Like ``subscribe`` but delivers only the number of matching documents."""
        return self._attach(Subscription(self, name, query, callback, NEWEST_FIRST, counting=True))

    def _attach(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions.setdefault(subscription.collection, []).append(subscription)
        self._deliver(subscription)
        return subscription

    def _detach(self, subscription: Subscription) -> None:
        with self._lock:
            listeners = self._subscriptions.get(subscription.collection, [])
            if subscription in listeners:
                listeners.remove(subscription)

    def _notify(self, name: str) -> None:
        with self._lock:
            listeners = list(self._subscriptions.get(name, []))
        for subscription in listeners:
            self._deliver(subscription)

    def _deliver(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        try:
            if subscription.counting:
                snapshot: Any = self.count(subscription.collection, subscription.query)
            else:
                snapshot = self.find(subscription.collection, subscription.query, sort=subscription.sort)
        except TransientStoreError:
            logger.exception("Live query on %s failed, delivering empty snapshot", subscription.collection)
            snapshot = 0 if subscription.counting else []
        try:
            subscription.callback(snapshot)
        except Exception:
            logger.exception("Snapshot callback for %s raised", subscription.collection)

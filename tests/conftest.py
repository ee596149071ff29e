"""
Shared fixtures for the unit tests.

``FakeFirestore`` is a small in-memory stand-in for the async Firestore client:
collections, documents, ``where(filter=FieldFilter(...))`` queries, ordering,
pagination, aggregation counts and atomic batches. It resolves
``SERVER_TIMESTAMP``, ``ArrayUnion`` and ``ArrayRemove`` the way the service
does and can be told to fail or to hold writes so in-flight behaviour can be
observed.
"""

import asyncio
import copy
import itertools
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gexc
from google.cloud.firestore_v1 import SERVER_TIMESTAMP, ArrayRemove, ArrayUnion

from bookforge import FirestoreDB, init_bookforge
from bookforge.auth import AuthContext
from bookforge.clock import VirtualClock
from bookforge.enums import BookStatus
from bookforge.firestore_model import BaseFirestoreModel
from bookforge.models import ALL_MODELS, Book, Chapter


# ---------------------------------------------------------------------------
# In-memory Firestore
# ---------------------------------------------------------------------------
class _FailureRule:
    def __init__(self, op, path, exc, times):
        self.op = op
        self.path = path
        self.exc = exc
        self.remaining = times

    def matches(self, op, path):
        if self.remaining is not None and self.remaining <= 0:
            return False
        if self.op != op:
            return False
        if self.path is None or path == self.path:
            return True
        # A trailing slash matches everything below that path.
        return self.path.endswith("/") and path.startswith(self.path)


class FakeStore:
    def __init__(self):
        self.docs = {}
        # ("set" | "update" | "delete" | "commit", path or [paths])
        self.writes = []
        self._rules = []
        self._gate = None
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # -- test controls -------------------------------------------------------
    def fail(self, op, path=None, exc=None, times=None):
        """
        Make ``op`` ("get", "query", "set", "update", "delete", "commit") raise
        for ``path``, every path below it when it ends with "/", or any path.
        """
        self._rules.append(
            _FailureRule(op, path, exc or gexc.ServiceUnavailable("store unavailable"), times)
        )

    def clear_failures(self):
        self._rules = []

    def hold_writes(self):
        self._gate = asyncio.Event()

    def release_writes(self):
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    def put(self, path, data):
        self.docs[path] = copy.deepcopy(data)

    def data(self, path):
        return copy.deepcopy(self.docs.get(path))

    def children(self, collection_path):
        prefix = collection_path + "/"
        return {
            path: data for path, data in self.docs.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        }

    # -- internals -------------------------------------------------------------
    def new_id(self):
        return f"auto{next(self._ids):04d}"

    def now(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def check(self, op, path):
        for rule in self._rules:
            if rule.matches(op, path):
                if rule.remaining is not None:
                    rule.remaining -= 1
                raise rule.exc

    async def wait_gate(self):
        if self._gate is not None:
            await self._gate.wait()

    def resolve(self, value, current=None):
        if value is SERVER_TIMESTAMP:
            return self.now()
        if isinstance(value, ArrayUnion):
            existing = list(current or [])
            return existing + [v for v in value.values if v not in existing]
        if isinstance(value, ArrayRemove):
            return [v for v in (current or []) if v not in value.values]
        return copy.deepcopy(value)

    def apply_set(self, path, data):
        self.docs[path] = {key: self.resolve(value) for key, value in data.items()}
        self.writes.append(("set", path))

    def apply_update(self, path, data):
        current = self.docs[path]
        for key, value in data.items():
            current[key] = self.resolve(value, current.get(key))
        self.writes.append(("update", path))

    def apply_delete(self, path):
        self.docs.pop(path, None)
        self.writes.append(("delete", path))


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocumentReference:
    def __init__(self, store, collection_path, doc_id):
        self._store = store
        self.id = doc_id
        self.path = f"{collection_path}/{doc_id}"

    async def get(self):
        self._store.check("get", self.path)
        return FakeSnapshot(self, self._store.data(self.path))

    async def set(self, data):
        self._store.check("set", self.path)
        await self._store.wait_gate()
        self._store.apply_set(self.path, data)

    async def update(self, data):
        self._store.check("update", self.path)
        await self._store.wait_gate()
        if self.path not in self._store.docs:
            raise gexc.NotFound(f"No document to update: {self.path}")
        self._store.apply_update(self.path, data)

    async def delete(self):
        self._store.check("delete", self.path)
        await self._store.wait_gate()
        self._store.apply_delete(self.path)


class _AggregationResult:
    def __init__(self, value):
        self.value = value


class _CountQuery:
    def __init__(self, query):
        self._query = query

    async def get(self):
        return [[_AggregationResult(len(self._query._run()))]]


_MISSING = object()


def _field_value(doc_id, data, field):
    if field == "__name__":
        return doc_id
    return data.get(field, _MISSING)


def _matches(actual, op, expected):
    if actual is _MISSING:
        return False
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    if op == "<":
        return actual < expected
    if op == "<=":
        return actual <= expected
    if op == ">":
        return actual > expected
    if op == ">=":
        return actual >= expected
    if op == "in":
        return actual in expected
    if op == "not-in":
        return actual not in expected
    if op == "array_contains":
        return expected in (actual or [])
    if op == "array_contains_any":
        return any(v in (actual or []) for v in expected)
    raise ValueError(f"Unsupported operator {op}")


class FakeQuery:
    def __init__(self, store, path, filters=(), orders=(), offset=None, limit=None):
        self._store = store
        self.path = path
        self._filters = list(filters)
        self._orders = list(orders)
        self._offset = offset
        self._limit = limit

    def _copy(self, **changes):
        values = dict(
            filters=self._filters, orders=self._orders, offset=self._offset, limit=self._limit
        )
        values.update(changes)
        return FakeQuery(self._store, self.path, **values)

    def where(self, filter):
        return self._copy(filters=self._filters + [(filter.field_path, filter.op_string, filter.value)])

    def order_by(self, field, direction="ASCENDING"):
        return self._copy(orders=self._orders + [(field, direction)])

    def select(self, fields):
        return self._copy()

    def offset(self, count):
        return self._copy(offset=count)

    def limit(self, count):
        return self._copy(limit=count)

    def count(self):
        return _CountQuery(self)

    def _run(self):
        self._store.check("query", self.path)
        rows = sorted(self._store.children(self.path).items())
        results = []
        for path, data in rows:
            doc_id = path.rsplit("/", 1)[1]
            if all(_matches(_field_value(doc_id, data, f), op, v) for f, op, v in self._filters):
                results.append((doc_id, data))
        for field, direction in reversed(self._orders):
            # Firestore drops documents that lack an ordered field.
            results = [r for r in results if _field_value(r[0], r[1], field) is not _MISSING]
            results.sort(
                key=lambda r: _field_value(r[0], r[1], field),
                reverse=str(direction) == "DESCENDING",
            )
        if self._offset:
            results = results[self._offset:]
        if self._limit is not None:
            results = results[: self._limit]
        return [
            FakeSnapshot(FakeDocumentReference(self._store, self.path, doc_id), copy.deepcopy(data))
            for doc_id, data in results
        ]

    async def get(self):
        return self._run()

    async def stream(self):
        for snapshot in self._run():
            yield snapshot


class FakeCollection(FakeQuery):
    def __init__(self, store, path):
        super().__init__(store, path)

    def document(self, doc_id=None):
        return FakeDocumentReference(self._store, self.path, doc_id or self._store.new_id())


class FakeBatch:
    def __init__(self, store):
        self._store = store
        self._ops = []

    def set(self, ref, data):
        self._ops.append(("set", ref.path, data))

    def update(self, ref, data):
        self._ops.append(("update", ref.path, data))

    def delete(self, ref):
        self._ops.append(("delete", ref.path, None))

    async def commit(self):
        paths = [path for _, path, _ in self._ops]
        for path in paths:
            self._store.check("commit", path)
        await self._store.wait_gate()
        for op, path, _ in self._ops:
            if op == "update" and path not in self._store.docs:
                raise gexc.NotFound(f"No document to update: {path}")
        for op, path, data in self._ops:
            if op == "set":
                self._store.apply_set(path, data)
            elif op == "update":
                self._store.apply_update(path, data)
            else:
                self._store.apply_delete(path)
        self._store.writes.append(("commit", paths))


class FakeFirestore:
    def __init__(self, store=None):
        self.store = store or FakeStore()

    def collection(self, path):
        return FakeCollection(self.store, path)

    def batch(self):
        return FakeBatch(self.store)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def fake_client():
    return FakeFirestore()


@pytest.fixture
def store(fake_client):
    return fake_client.store


@pytest.fixture
def firestore_db(fake_client):
    db = FirestoreDB.__new__(FirestoreDB)
    db.project_id = "test-project"
    db.database = None
    db.credentials = None
    db._emulator_host = None
    db._listener_client = MagicMock()
    db.client = fake_client
    return db


@pytest.fixture(autouse=True)
def _reset_registry():
    saved = list(BaseFirestoreModel._registered_models)
    yield
    BaseFirestoreModel._registered_models[:] = saved
    for model in ALL_MODELS:
        model._db = None


@pytest.fixture
def db(firestore_db):
    init_bookforge(firestore_db, ALL_MODELS)
    return firestore_db


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def author():
    return AuthContext(
        uid="author_1",
        display_name="Ada",
        email="ada@example.com",
        email_verified=True,
    )


@pytest.fixture
def reader():
    return AuthContext(uid="reader_1", display_name="Grace", email_verified=True)


@pytest.fixture
def seed_book(db, store, author):
    """
    Store a book with the given chapter titles (orders 1..n) and reviews,
    returning the loaded :class:`Book`.
    """

    def _seed(
        book_id="book_1",
        chapters=("Intro", "Middle", "End"),
        reviews=0,
        cover_image="https://img.example.com/cover.png",
        status=BookStatus.DRAFT.value,
        author_id=None,
    ):
        store.put(f"books/{book_id}", {
            "title": "The Book",
            "authorId": author_id or author.uid,
            "author": author.display_name,
            "status": status,
            "coverImage": cover_image,
            "tags": [],
            "createdAt": store.now(),
            "updatedAt": store.now(),
        })
        for position, title in enumerate(chapters):
            store.put(f"books/{book_id}/chapters/ch{position + 1}", {
                "title": title,
                "content": f"<p>{title}</p>",
                "order": position + 1,
                "createdAt": store.now(),
            })
        for index in range(reviews):
            store.put(f"books/{book_id}/reviews/rv{index + 1}", {
                "authorId": f"reader_{index + 1}",
                "rating": 4,
                "text": "Nice",
                "createdAt": store.now(),
            })
        book = Book(
            id=book_id,
            title="The Book",
            author_id=author_id or author.uid,
            author=author.display_name,
            status=status,
            cover_image=cover_image,
        )
        return book

    return _seed


async def load_chapters(book):
    return await book.subcollection(Chapter).find_all()


@pytest.fixture
def chapters_of():
    return load_chapters

"""
Shared fixtures for mongo-stream tests.

Provides:
- An in-memory database handle with the same surface as MongoDBClient,
  with hooks for injecting write and cursor failures and slow cursors
- Mock MongoDB databases (mongomock-motor) for exercising MongoDBClient
- Sample documents
"""

import asyncio
import logging

import pytest
from bson.raw_bson import RawBSONDocument

from mongo_stream.exceptions import CursorError, DatabaseConnectionError, WriteError


# =============================================================================
# In-memory database handle
# =============================================================================

class InMemoryDatabase:
    """Stand-in for MongoDBClient keeping collections as lists of documents.

    Clones share the collections and the recorded calls, like clones of a
    real handle share one connection pool.
    """

    def __init__(self, database_name="shop", collections=None, _shared=None):
        self.database_name = database_name
        if _shared is None:
            _shared = {
                "collections": {name: list(docs) for name, docs in (collections or {}).items()},
                "flushes": {},
                "single_writes": {},
                "dropped": [],
                "indexes": {},
                "rejected_ids": set(),
                "failing_writes": set(),
                "failing_cursors": {},
                "cursor_delay": 0,
                "stalled": set(),
                "lost_connection": set(),
                "closed_cursors": [],
                "estimates": [],
                "clones": 0,
                "closed": False,
                "enumeration_error": None,
            }
        self._shared = _shared

    def __getattr__(self, name):
        shared = self.__dict__.get("_shared")
        if shared is not None and name in shared:
            return shared[name]
        raise AttributeError(name)

    def clone(self):
        self._shared["clones"] += 1
        return InMemoryDatabase(self.database_name, _shared=self._shared)

    def close(self):
        self._shared["closed"] = True

    def documents(self, collection_name):
        return self.collections.get(collection_name, [])

    async def list_collections(self):
        if self.enumeration_error:
            raise self.enumeration_error
        return list(self.collections)

    async def cursor(self, collection_name):
        fail_after = self.failing_cursors.get(collection_name)
        try:
            for position, document in enumerate(list(self.documents(collection_name))):
                if collection_name in self.stalled:
                    await asyncio.sleep(3600)
                if fail_after is not None and position >= fail_after:
                    raise CursorError(f"cursor on {collection_name} killed", collection_name)
                await asyncio.sleep(self.cursor_delay)
                # Raw documents are handed over untouched, like the driver does
                yield document if isinstance(document, RawBSONDocument) else dict(document)
        finally:
            self.closed_cursors.append(collection_name)

    def _check_writable(self, collection_name):
        if collection_name in self.failing_writes:
            raise WriteError(f"writes to {collection_name} refused", collection_name)

    async def insert_one(self, collection_name, document):
        await asyncio.sleep(0)
        self._check_writable(collection_name)
        self.single_writes[collection_name] = self.single_writes.get(collection_name, 0) + 1
        if document_id(document) in self.rejected_ids:
            raise WriteError("duplicate key", collection_name, failed_indices=[0], inserted_count=0)
        self.collections.setdefault(collection_name, []).append(document)

    async def insert_many(self, collection_name, documents):
        await asyncio.sleep(0)
        if collection_name in self.lost_connection:
            raise DatabaseConnectionError(f"connection reset writing {collection_name}", collection_name)
        if collection_name in self.failing_writes:
            raise WriteError(
                f"writes to {collection_name} refused", collection_name,
                failed_indices=list(range(len(documents))), inserted_count=0
            )
        self.flushes.setdefault(collection_name, []).append(len(documents))
        failed = []
        target = self.collections.setdefault(collection_name, [])
        for index, document in enumerate(documents):
            if document_id(document) in self.rejected_ids:
                failed.append(index)
            else:
                target.append(document)
        if failed:
            raise WriteError(
                "duplicate key", collection_name,
                failed_indices=failed, inserted_count=len(documents) - len(failed)
            )
        return len(documents)

    async def drop_collection(self, collection_name):
        self.dropped.append(collection_name)
        self.collections.pop(collection_name, None)

    async def count_documents(self, collection_name):
        return len(self.documents(collection_name))

    async def estimated_document_count(self, collection_name):
        self.estimates.append(collection_name)
        return len(self.documents(collection_name))

    async def index_information(self, collection_name):
        return self.indexes.get(collection_name, {"_id_": {"key": [("_id", 1)], "v": 2}})

    async def create_index(self, collection_name, keys, **options):
        info = {"key": keys, **options}
        self.indexes.setdefault(collection_name, {"_id_": {"key": [("_id", 1)], "v": 2}})
        self.indexes[collection_name][options.get("name", "index")] = info
        return options.get("name")


def document_id(document):
    """_id of a plain document; raw documents are never decoded"""
    return document.get("_id") if isinstance(document, dict) else None


def make_documents(prefix, count):
    return [{"_id": f"{prefix}-{i}", "n": i, "payload": {"tags": [prefix, i]}} for i in range(count)]


@pytest.fixture
def make_database():
    """Factory for in-memory database handles"""
    def _make(collections=None, database_name="shop"):
        return InMemoryDatabase(database_name, collections)
    return _make


@pytest.fixture
def shop_source(make_database):
    """Source with the users (3 documents) and orders (5 documents) collections"""
    return make_database({
        "users": make_documents("user", 3),
        "orders": make_documents("order", 5),
    })


@pytest.fixture
def destination(make_database):
    return make_database()


@pytest.fixture
def documents():
    return make_documents


# =============================================================================
# MongoDB Fixtures (mongomock-motor)
# =============================================================================

@pytest.fixture
def mock_motor_client():
    """
    Create an in-memory motor-compatible client using mongomock-motor.
    """
    try:
        from mongomock_motor import AsyncMongoMockClient
        client = AsyncMongoMockClient()
        yield client
        client.close()
    except ImportError:
        pytest.skip("mongomock-motor not installed")


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep the package logger from leaking handlers between tests"""
    logger = logging.getLogger("mongo_stream")
    handlers = list(logger.handlers)
    level, propagate = logger.level, logger.propagate
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate

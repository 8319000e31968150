"""Shared fixtures: an in-memory stand-in for a motor client that raises real pymongo errors."""
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from pymongo.errors import BulkWriteError, DuplicateKeyError, ServerSelectionTimeoutError

from config import Settings
from db import Database


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in query.items())


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = documents

    def sort(self, key, direction):
        self._documents.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return self

    def skip(self, count):
        self._documents = self._documents[count:]
        return self

    def limit(self, count):
        self._documents = self._documents[:count]
        return self

    async def to_list(self, length=None):
        return [dict(d) for d in self._documents[:length]]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in self._documents:
            yield document


class FakeCollection:
    """Just enough of a motor collection for the records collection."""

    def __init__(self):
        self.documents: List[Dict[str, Any]] = []
        self.indexes: List[Any] = []
        self.insert_many_calls: List[int] = []
        self.fail_with: Optional[Exception] = None

    def _check_failure(self):
        if self.fail_with is not None:
            raise self.fail_with

    def _exists(self, record_id) -> bool:
        return any(d["recordId"] == record_id for d in self.documents)

    async def create_indexes(self, indexes):
        self.indexes.extend(indexes)
        return [index.document["name"] for index in indexes]

    async def insert_one(self, document):
        self._check_failure()
        if self._exists(document["recordId"]):
            message = f"E11000 duplicate key error dup key: {{ recordId: \"{document['recordId']}\" }}"
            raise DuplicateKeyError(message, 11000, {"code": 11000, "errmsg": message})
        self.documents.append(dict(document))
        return SimpleNamespace(inserted_id=len(self.documents))

    async def insert_many(self, documents, ordered=True):
        self._check_failure()
        self.insert_many_calls.append(len(documents))
        inserted = []
        write_errors = []
        for index, document in enumerate(documents):
            if self._exists(document["recordId"]):
                write_errors.append({"index": index, "code": 11000, "errmsg": "E11000 duplicate key error"})
                if ordered:
                    break
                continue
            self.documents.append(dict(document))
            inserted.append(len(self.documents))
        if write_errors:
            raise BulkWriteError({
                "writeErrors": write_errors,
                "writeConcernErrors": [],
                "nInserted": len(inserted),
            })
        return SimpleNamespace(inserted_ids=inserted)

    async def count_documents(self, query):
        self._check_failure()
        return sum(1 for d in self.documents if _matches(d, query))

    def find(self, query):
        return FakeCursor([dict(d) for d in self.documents if _matches(d, query)])

    def aggregate(self, pipeline):
        group = pipeline[0]["$group"]
        key = group["_id"]
        buckets: Dict[Any, List[Dict[str, Any]]] = {}
        for document in self.documents:
            bucket = document.get(key[1:]) if isinstance(key, str) else None
            buckets.setdefault(bucket, []).append(document)

        results = []
        for bucket, members in buckets.items():
            row = {"_id": bucket}
            for name, accumulator in group.items():
                if name == "_id":
                    continue
                if "$sum" in accumulator:
                    row[name] = len(members)
                elif "$avg" in accumulator:
                    field = accumulator["$avg"][1:]
                    row[name] = sum(m[field] for m in members) / len(members)
            results.append(row)
        return FakeCursor(results)

    async def delete_many(self, query):
        self._check_failure()
        before = len(self.documents)
        self.documents = [d for d in self.documents if not _matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.documents))


class FakeMotorClient:
    def __init__(self, collection: FakeCollection):
        self.collection = collection
        self.closed = False
        self.admin = SimpleNamespace(command=AsyncMock(return_value={"ok": 1}))
        self.options: Dict[str, Any] = {}

    def __getitem__(self, name):
        return {"records": self.collection}

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Callable passed as ``client_factory``; fails the first ``failures`` pings."""

    def __init__(self, failures: int = 0, error: Optional[Exception] = None):
        self.collection = FakeCollection()
        self.failures = failures
        self.error = error or ServerSelectionTimeoutError("No servers available")
        self.clients: List[FakeMotorClient] = []

    def __call__(self, uri, **options):
        client = FakeMotorClient(self.collection)
        client.options = options
        if len(self.clients) < self.failures:
            client.admin.command.side_effect = self.error
        self.clients.append(client)
        return client


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        MONGO_URI="mongodb://fake:27017",
        DB_NAME="sensor_test",
        RECORDS_COLLECTION="records",
        DEBUG=True,
        DB_MAX_RETRIES=3,
        DB_RETRY_BASE_DELAY=1.0,
        DB_RETRY_MAX_DELAY=10.0,
        RATE_LIMIT_WINDOW_SECONDS=60,
        RATE_LIMIT_GENERAL=100,
        RATE_LIMIT_STRICT=10,
        INGEST_MAX_BATCH=50,
        SHUTDOWN_TIMEOUT=1,
    )


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def database(test_settings, client_factory) -> Database:
    return Database(test_settings, client_factory=client_factory, sleep=AsyncMock())


@pytest_asyncio.fixture
async def connected_database(database) -> Database:
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def valid_record() -> Dict[str, Any]:
    return {
        "recordId": "REC-A-0001",
        "timestamp": 1706688000000,
        "temperature": 21.5,
        "humidity": 45.25,
        "location": "Berlin",
        "status": "active",
        "metadata": {"source": "api", "version": "1.0"},
    }

"""
Pytest configuration and fixtures for docmigrate tests.

The engine only talks to motor through a handful of collection methods, so the
tests run against an in-memory stand-in with the same call signatures instead of
a live MongoDB server.
"""
import copy
import re
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import ConfigurationError as PyMongoConfigurationError
from pymongo.errors import DuplicateKeyError


def _compare(value, condition) -> bool:
    if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$gt":
                if value is None or not value > operand:
                    return False
            elif op == "$lt":
                if value is None or not value < operand:
                    return False
            elif op == "$in":
                if value not in operand:
                    return False
            else:
                raise NotImplementedError(op)
        return True
    return value == condition


def matches(doc, query) -> bool:
    return all(_compare(doc.get(field), condition) for field, condition in (query or {}).items())


class FakeCursor:
    def __init__(self, collection, query):
        self.collection = collection
        self.query = query
        self._sort = None
        self._limit = 0

    def sort(self, key, direction=1):
        self._sort = (key, direction)
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        self.collection._maybe_fail("find")
        docs = [d for d in self.collection.documents if matches(d, self.query)]
        if self._sort:
            key, direction = self._sort
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        if self._limit:
            docs = docs[:self._limit]
        if length is not None:
            docs = docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    """In-memory collection with the subset of the motor API used by docmigrate"""

    def __init__(self, name):
        self.name = name
        self.documents = []
        self.indexes = {}
        self.calls = []
        self._faults = {}

    def inject(self, method, error, after=0, times=None):
        """Raise `error` from `method` once `after` calls have succeeded"""
        self._faults[method] = {"error": error, "after": after, "times": times, "seen": 0}

    def clear_faults(self):
        self._faults.clear()

    def _maybe_fail(self, method):
        self.calls.append(method)
        fault = self._faults.get(method)
        if not fault:
            return
        fault["seen"] += 1
        if fault["seen"] <= fault["after"]:
            return
        if fault["times"] is not None:
            if fault["times"] <= 0:
                return
            fault["times"] -= 1
        raise fault["error"]

    def _check_unique(self, doc, ignore=None):
        for other in self.documents:
            if other is ignore:
                continue
            if other["_id"] == doc["_id"]:
                raise DuplicateKeyError(
                    "E11000 duplicate key error", 11000,
                    {"keyPattern": {"_id": 1}, "keyValue": {"_id": doc["_id"]}})
            for index in self.indexes.values():
                if not index["unique"]:
                    continue
                fields = [field for field, _ in index["key"]]
                if all(f in doc for f in fields) and all(other.get(f) == doc[f] for f in fields):
                    raise DuplicateKeyError(
                        "E11000 duplicate key error", 11000,
                        {"keyPattern": {f: 1 for f in fields}, "keyValue": {f: doc[f] for f in fields}})

    # reads

    def find(self, query=None, projection=None):
        return FakeCursor(self, query or {})

    async def find_one(self, query=None, projection=None):
        self._maybe_fail("find_one")
        for doc in self.documents:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def estimated_document_count(self):
        self._maybe_fail("estimated_document_count")
        return len(self.documents)

    # writes

    async def insert_one(self, document):
        self._maybe_fail("insert_one")
        if "_id" not in document:
            document["_id"] = ObjectId()
        doc = copy.deepcopy(document)
        self._check_unique(doc)
        self.documents.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    async def replace_one(self, query, replacement, upsert=False):
        self._maybe_fail("replace_one")
        for index, doc in enumerate(self.documents):
            if matches(doc, query):
                new = copy.deepcopy(replacement)
                new["_id"] = doc["_id"]
                self._check_unique(new, ignore=doc)
                self.documents[index] = new
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        new = copy.deepcopy(replacement)
        if "_id" not in new:
            new["_id"] = query.get("_id", ObjectId())
        self._check_unique(new)
        self.documents.append(new)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=new["_id"])

    async def update_one(self, query, update, upsert=False):
        self._maybe_fail("update_one")
        for doc in self.documents:
            if matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        self._maybe_fail("delete_one")
        for index, doc in enumerate(self.documents):
            if matches(doc, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def create_index(self, keys, unique=False, name=None):
        self._maybe_fail("create_index")
        if isinstance(keys, str):
            keys = [(keys, 1)]
        name = name or "_".join(f"{field}_{direction}" for field, direction in keys)
        self.indexes[name] = {"key": list(keys), "unique": unique}
        return name

    # helpers for tests

    def seed(self, documents):
        for doc in documents:
            doc = copy.deepcopy(doc)
            doc.setdefault("_id", ObjectId())
            self.documents.append(doc)
        return self


class FakeDatabase:
    def __init__(self, name="app"):
        self.name = name
        self.collections = {}
        self.drop_failures = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def get_collection(self, name):
        return self[name]

    async def drop_collection(self, name):
        if name in self.drop_failures:
            raise self.drop_failures[name]
        self.collections.pop(name, None)

    async def list_collection_names(self):
        return [name for name, c in self.collections.items() if c.documents or c.indexes]


class FakeAdmin:
    def __init__(self, client):
        self.client = client

    async def command(self, name):
        if self.client.server.ping_error is not None:
            raise self.client.server.ping_error
        return {"ok": 1.0}


class FakeServer:
    """Databases shared by every client created through `client_factory`"""

    def __init__(self):
        self.databases = {}
        self.ping_error = None
        self.clients = []

    def database(self, name="app"):
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def client_factory(self, uri, **kwargs):
        client = FakeClient(uri, self, **kwargs)
        self.clients.append(client)
        return client


class FakeClient:
    def __init__(self, uri, server, **kwargs):
        if not uri.startswith(("mongodb://", "mongodb+srv://")):
            raise PyMongoConfigurationError("Invalid URI scheme")
        self.uri = uri
        self.server = server
        self.options = kwargs
        self.closed = False
        self.admin = FakeAdmin(self)

    def get_default_database(self, default=None):
        match = re.match(r"mongodb(?:\+srv)?://[^/]+/([^?]+)", self.uri)
        name = match.group(1) if match else default
        if not name:
            raise PyMongoConfigurationError("No default database name defined or provided.")
        return self.server.database(name)

    def close(self):
        self.closed = True


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def database(server):
    return server.database("app")


CONFIG_VARIABLES = (
    "MONGODB_URI", "MONGO_URI", "MIGRATE_DB_NAME", "MIGRATE_MAX_POOL_SIZE",
    "MIGRATE_BATCH_SIZE", "MIGRATE_CONNECT_TIMEOUT_MS", "MIGRATE_SOCKET_TIMEOUT_MS",
    "MIGRATE_SERVER_SELECTION_TIMEOUT_MS", "MIGRATE_CHECKPOINT_COLLECTION",
    "MIGRATE_LOCK_COLLECTION", "MIGRATE_LOCK_TTL_SECONDS", "MIGRATE_SHOW_PROGRESS",
    "MIGRATE_LOG_LEVEL", "MIGRATE_LOG_FILE", "MIGRATE_ENVIRONMENT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty working directory and no migration variables from the outer environment"""
    for name in CONFIG_VARIABLES:
        # set first so teardown also removes values loaded from .env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return tmp_path

import asyncio
from typing import Any, Dict, List, Optional

import mongomock
import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from config import Settings
from dispatcher import Dispatcher
from store_gateway import ConnectionManager, StoreGateway

CREDENTIALS = "alice:s3cret"
TEST_URI = f"mongodb://{CREDENTIALS}@db.example:27017/?authSource=admin"
TEST_DATABASE = "shop"


# --------------------------------------------------
# ASYNC ADAPTER OVER MONGOMOCK (motor-shaped)
# --------------------------------------------------

class FakeCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, spec):
        self._cursor = self._cursor.sort(spec)
        return self

    def skip(self, n):
        self._cursor = self._cursor.skip(n)
        return self

    def limit(self, n):
        self._cursor = self._cursor.limit(n)
        return self

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class ListCursor:
    def __init__(self, items: List[Any]):
        self._items = items

    async def to_list(self, length=None):
        return self._items if length is None else self._items[:length]


class FakeCollection:
    def __init__(self, client: "FakeMotorClient", collection):
        self._client = client
        self._collection = collection

    def find(self, filter=None, projection=None, **kwargs):
        self._client.record("find", kwargs)
        return FakeCursor(self._collection.find(filter, projection))

    async def count_documents(self, filter, **kwargs):
        self._client.record("count_documents", kwargs)
        return self._collection.count_documents(filter)

    def aggregate(self, pipeline, **kwargs):
        self._client.record("aggregate", kwargs)
        for stage in pipeline:
            for op in stage:
                if op not in {"$match", "$group", "$sort", "$limit", "$skip", "$project", "$count", "$unwind"}:
                    raise OperationFailure(f"Unrecognized pipeline stage name: '{op}'")
        return ListCursor(list(self._collection.aggregate(pipeline)))

    async def distinct(self, key, filter=None, **kwargs):
        self._client.record("distinct", kwargs)
        return self._collection.distinct(key, filter)


class FakeDatabase:
    def __init__(self, client: "FakeMotorClient", name: str):
        self._client = client
        self.name = name
        self._db = client.backend[name]

    def __getitem__(self, name):
        return FakeCollection(self._client, self._db[name])

    async def list_collection_names(self):
        self._client.record("list_collection_names", {})
        return self._db.list_collection_names()

    async def list_collections(self):
        self._client.record("list_collections", {})
        names = self._db.list_collection_names()
        return ListCursor([{"name": n, "type": "collection"} for n in names])

    async def command(self, command, **kwargs):
        if isinstance(command, str):
            command = {command: 1}
        name = next(iter(command))
        self._client.record(name, command)
        factory = self._client.factory
        if name == "ping":
            if factory.delay:
                await asyncio.sleep(factory.delay)
            if factory.fail:
                raise ServerSelectionTimeoutError("db.example:27017: connection refused")
            return {"ok": 1.0}
        if name == "collStats":
            coll = command[name]
            if coll in factory.broken_stats or coll not in self._db.list_collection_names():
                raise OperationFailure(f"Collection [{self.name}.{coll}] not found.")
            count = self._db[coll].count_documents({})
            return {"ns": f"{self.name}.{coll}", "count": count, "size": count * 100, "avgObjSize": 100 if count else 0}
        if name == "dbStats":
            names = self._db.list_collection_names()
            return {"db": self.name, "collections": len(names), "dataSize": 1024, "storageSize": 4096, "indexes": len(names)}
        if name == "serverStatus":
            return {"version": "7.0.12", "uptime": 3600, "host": "fixture-host", "localTime": factory.ticks()}
        if name == "listDatabases":
            return {
                "databases": [
                    {"name": n, "sizeOnDisk": 8192, "empty": False}
                    for n in self._client.backend.list_database_names()
                ],
                "ok": 1.0,
            }
        raise OperationFailure(f"no such command: '{name}'")


class FakeMotorClient:
    def __init__(self, factory: "FakeClientFactory", uri: str, options: Dict[str, Any]):
        self.factory = factory
        self.backend = factory.backend
        self.uri = uri
        self.options = options
        self.closed = False

    def record(self, operation: str, detail: Any) -> None:
        self.factory.operations.append((operation, detail))

    @property
    def admin(self):
        return FakeDatabase(self, "admin")

    def __getitem__(self, name):
        return FakeDatabase(self, name)

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Stands in for AsyncIOMotorClient; counts connect attempts."""

    def __init__(self, backend, fail: bool = False, delay: float = 0.0):
        self.backend = backend
        self.fail = fail
        self.delay = delay
        self.calls = 0
        self.clients: List[FakeMotorClient] = []
        self.operations: List[Any] = []
        self.broken_stats = set()
        self._tick = 0

    def __call__(self, uri: str, **options):
        self.calls += 1
        client = FakeMotorClient(self, uri, options)
        self.clients.append(client)
        return client

    def ticks(self) -> int:
        self._tick += 1
        return self._tick

    def store_calls(self) -> List[str]:
        """Operations other than the connect-time ping."""
        return [op for op, _ in self.operations if op != "ping"]


# --------------------------------------------------
# FIXTURES
# --------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(uri=TEST_URI, database=TEST_DATABASE)


@pytest.fixture
def backend():
    client = mongomock.MongoClient()
    db = client[TEST_DATABASE]
    orders = [
        {"order_id": i, "status": "shipped", "total": 10 * i, "items": ["a", "b"]}
        for i in range(1, 6)
    ] + [
        {"order_id": i, "status": "pending", "total": 10 * i, "items": []}
        for i in range(6, 9)
    ]
    db["orders"].insert_many(orders)
    db["customers"].insert_many([
        {"name": "Ada", "age": 36, "vip": True, "address": {"city": "London"}, "tags": ["x"]},
        {"name": "Grace", "age": None, "vip": False},
    ])
    client["analytics"]["events"].insert_one({"kind": "click"})
    return client


@pytest.fixture
def factory(backend) -> FakeClientFactory:
    return FakeClientFactory(backend)


@pytest.fixture
def connections(settings, factory) -> ConnectionManager:
    return ConnectionManager(settings, factory)


@pytest.fixture
def gateway(connections) -> StoreGateway:
    return StoreGateway(connections)


@pytest.fixture
def dispatcher(settings, gateway) -> Dispatcher:
    return Dispatcher(settings, gateway)


def make_dispatcher(settings: Settings, factory: FakeClientFactory) -> Dispatcher:
    return Dispatcher(settings, StoreGateway(ConnectionManager(settings, factory)))


def error_body(envelope) -> Optional[Dict[str, Any]]:
    return None if envelope.ok else envelope.render()

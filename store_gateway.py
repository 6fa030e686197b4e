"""Store Gateway: the single MongoDB connection and the typed read operations over it."""

import asyncio
import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient

from config import SAMPLE_SIZE, Settings
from errors import ConnectionUnavailable, StoreOperationFailed

logger = logging.getLogger("mongodb-mcp.gateway")

ClientFactory = Callable[..., Any]

_CREDENTIALS_RE = re.compile(r"//.*@")

CONNECTION_SUGGESTION = "Please verify MongoDB is running and the connection settings are correct"


def redact_uri(uri: str) -> str:
    """Hide the user:password portion of a connection string."""
    return _CREDENTIALS_RE.sub("//***@", uri)


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class ConnectionManager:
    """Owns the process's MongoDB client.

    The connection is established lazily. Concurrent callers of
    ``ensure_connected`` share one in-flight attempt; a failed attempt leaves
    the manager in FAILED and the next call starts a fresh one.
    """

    def __init__(self, settings: Settings, client_factory: Optional[ClientFactory] = None) -> None:
        self.settings = settings
        self._client_factory = client_factory or AsyncIOMotorClient
        self._lock = asyncio.Lock()
        self._attempt: Optional[asyncio.Task] = None
        self._client: Any = None
        self._database: Any = None
        self._state = ConnectionState.UNCONNECTED
        self.last_error: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _unavailable(self, message: str) -> ConnectionUnavailable:
        return ConnectionUnavailable(
            message,
            uri=redact_uri(self.settings.uri),
            database=self.settings.database,
            lastError=self.last_error,
        )

    @property
    def client(self) -> Any:
        if self._client is None or self._state is not ConnectionState.CONNECTED:
            raise self._unavailable("MongoDB client is not connected")
        return self._client

    def get(self) -> Any:
        """Working database handle; raises if not connected."""
        if self._state is not ConnectionState.CONNECTED:
            raise self._unavailable("MongoDB connection has not been established")
        return self._database

    async def ensure_connected(self) -> Any:
        if self._state is ConnectionState.CONNECTED:
            return self._database
        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return self._database
            if self._attempt is None:
                self._state = ConnectionState.CONNECTING
                self._attempt = asyncio.get_running_loop().create_task(self._connect())
            attempt = self._attempt
        # Shielded: one caller going away must not cancel the attempt the others await.
        return await asyncio.shield(attempt)

    async def _connect(self) -> Any:
        settings = self.settings
        target = redact_uri(settings.uri)
        logger.info("Connecting to MongoDB %s (database=%s)", target, settings.database)
        client = None
        try:
            client = self._client_factory(settings.uri, **settings.client_options())
            await client.admin.command("ping")
            database = client[settings.database]
        except asyncio.CancelledError:
            self._state = ConnectionState.UNCONNECTED
            if client is not None:
                client.close()
            logger.info("MongoDB connection attempt to %s cancelled", target)
            raise
        except Exception as exc:
            self._state = ConnectionState.FAILED
            self.last_error = str(exc)
            if client is not None:
                client.close()
            logger.error("MongoDB connection to %s failed: %s", target, exc)
            raise ConnectionUnavailable(
                f"MongoDB connection failed: {exc}",
                uri=target,
                database=settings.database,
                suggestion=CONNECTION_SUGGESTION,
            ) from exc
        finally:
            self._attempt = None

        self._client = client
        self._database = database
        self._state = ConnectionState.CONNECTED
        self.last_error = None
        logger.info("Connected to MongoDB database %s", settings.database)
        return database

    async def close(self) -> None:
        attempt = self._attempt
        if attempt is not None and not attempt.done():
            # A connect still in flight at shutdown would otherwise leave an unowned client.
            attempt.cancel()
            await asyncio.wait([attempt])
        async with self._lock:
            # A task cancelled before it first ran never reaches its own cleanup.
            if attempt is not None and self._attempt is attempt:
                self._attempt = None
            client, self._client, self._database = self._client, None, None
            self._state = ConnectionState.UNCONNECTED
        if client is not None:
            client.close()
            logger.info("MongoDB connection closed")


class StoreGateway:
    """Typed read operations; arguments are already-decoded driver structures."""

    def __init__(self, connections: ConnectionManager) -> None:
        self.connections = connections

    @property
    def settings(self) -> Settings:
        return self.connections.settings

    async def ensure_connected(self) -> Any:
        return await self.connections.ensure_connected()

    def _db(self, database: Optional[str] = None) -> Any:
        if database:
            return self.connections.client[database]
        return self.connections.get()

    def _time_limit(self) -> Dict[str, Any]:
        ms = self.settings.max_time_ms
        return {"maxTimeMS": ms} if ms > 0 else {}

    async def find(
        self,
        collection: str,
        filter: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
        sort: Optional[List[Tuple[str, Any]]] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Dict[str, Any]], int]:
        options: Dict[str, Any] = {}
        if self.settings.max_time_ms > 0:
            options["max_time_ms"] = self.settings.max_time_ms
        try:
            cursor = self._db()[collection].find(filter, projection, **options)
            if sort:
                cursor = cursor.sort(sort)
            cursor = cursor.skip(skip).limit(limit)
            documents = await cursor.to_list(length=limit)
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("find", exc) from exc
        return documents, len(documents)

    async def count(self, collection: str, filter: Dict[str, Any]) -> int:
        try:
            return await self._db()[collection].count_documents(filter, **self._time_limit())
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("count", exc) from exc

    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            cursor = self._db()[collection].aggregate(pipeline, **self._time_limit())
            return await cursor.to_list(length=None)
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("aggregate", exc) from exc

    async def distinct(self, collection: str, field: str, filter: Dict[str, Any]) -> List[Any]:
        try:
            return await self._db()[collection].distinct(field, filter, **self._time_limit())
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("distinct", exc) from exc

    async def sample(self, collection: str, size: int = SAMPLE_SIZE) -> List[Dict[str, Any]]:
        documents, _ = await self.find(collection, {}, limit=size)
        return documents

    async def list_collection_names(self) -> List[str]:
        try:
            return await self._db().list_collection_names()
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("listCollections", exc) from exc

    async def list_collections(self, database: Optional[str] = None) -> List[Dict[str, Any]]:
        """Collections with their stats; a collection whose stats fail is reported inline."""
        try:
            db = self._db(database)
            cursor = await db.list_collections()
            infos = await cursor.to_list(length=None)
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("listCollections", exc) from exc

        async def describe(info: Dict[str, Any]) -> Dict[str, Any]:
            name = info.get("name")
            try:
                stats = await db.command({"collStats": name})
            except Exception as exc:
                logger.debug("collStats failed for %s: %s", name, exc)
                return {"name": name, "type": info.get("type"), "error": "Could not retrieve stats"}
            return {
                "name": name,
                "type": info.get("type"),
                "count": stats.get("count") or 0,
                "size": stats.get("size") or 0,
                "avgObjSize": stats.get("avgObjSize") or 0,
            }

        return list(await asyncio.gather(*(describe(info) for info in infos)))

    async def list_databases(self) -> List[Dict[str, Any]]:
        try:
            reply = await self.connections.client.admin.command("listDatabases")
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("listDatabases", exc) from exc
        return list(reply.get("databases", []))

    async def collection_stats(self, collection: str) -> Dict[str, Any]:
        try:
            return await self._db().command({"collStats": collection})
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("collStats", exc) from exc

    async def database_stats(self) -> Dict[str, Any]:
        try:
            return await self._db().command("dbStats")
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("dbStats", exc) from exc

    async def server_status(self) -> Dict[str, Any]:
        try:
            return await self._db().command("serverStatus")
        except ConnectionUnavailable:
            raise
        except Exception as exc:
            raise StoreOperationFailed("serverStatus", exc) from exc

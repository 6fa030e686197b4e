"""Request dispatch for the MongoDB MCP server.

The dispatcher is the error boundary: every public coroutine returns an
``Envelope`` and none of them raises. Tool arguments are validated into a
pydantic model, query fragments are decoded, and only then is the store
touched.
"""

import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

import catalog
from config import RESOURCE_SCHEME, SAMPLE_SIZE, Settings
from errors import (
    InvalidArguments,
    InvalidResourceAddress,
    MongoMCPError,
    UnknownOperation,
)
from models import (
    AggregateInput,
    CountInput,
    DistinctInput,
    Envelope,
    ErrorInfo,
    ListCollectionsInput,
    QueryInput,
    ResourceDescriptor,
    StrictModel,
)
from query_fragments import (
    normalize_limit,
    normalize_skip,
    parse_filter,
    parse_pipeline,
    parse_projection,
    parse_sort,
)
from schema_inference import infer_schema
from serialization import to_jsonable
from store_gateway import StoreGateway, redact_uri

logger = logging.getLogger("mongodb-mcp.dispatch")

_RESOURCE_URI_RE = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*)://(?P<database>[^/]+)/(?P<collection>.+)$")


def _error_info(exc: MongoMCPError, operation: Optional[str] = None) -> ErrorInfo:
    return ErrorInfo(
        kind=exc.kind,
        title=exc.title,
        message=exc.message,
        operation=operation,
        context=to_jsonable(exc.context),
    )


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class Dispatcher:
    def __init__(self, settings: Settings, gateway: StoreGateway) -> None:
        self.settings = settings
        self.gateway = gateway
        self._handlers: Dict[str, Callable[[Any], Awaitable[Dict[str, Any]]]] = {
            catalog.QUERY: self._query,
            catalog.COUNT: self._count,
            catalog.AGGREGATE: self._aggregate,
            catalog.DISTINCT: self._distinct,
            catalog.LIST_DATABASES: self._list_databases,
            catalog.LIST_COLLECTIONS: self._list_collections,
            catalog.VERIFY_CONNECTION: self._verify_connection,
        }

    @property
    def redacted_uri(self) -> str:
        return redact_uri(self.settings.uri)

    # ---- listing ----------------------------------------------------------

    def list_operations(self) -> Envelope:
        return Envelope.success(list(catalog.OPERATION_CATALOG))

    def list_prompts(self) -> Envelope:
        return Envelope.success(list(catalog.PROMPT_CATALOG))

    def get_prompt(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> Envelope:
        try:
            text = catalog.render_prompt(name, arguments)
        except MongoMCPError as exc:
            return Envelope.failure(_error_info(exc))
        return Envelope.success({"name": name, "messages": [{"role": "user", "text": text}]})

    def resource_uri(self, collection: str) -> str:
        return f"{RESOURCE_SCHEME}://{self.settings.database}/{collection}"

    async def list_resources(self) -> Envelope:
        try:
            await self.gateway.ensure_connected()
            names = await self.gateway.list_collection_names()
        except MongoMCPError as exc:
            return Envelope.failure(_error_info(exc))
        resources = [
            ResourceDescriptor(
                uri=self.resource_uri(name),
                name=name,
                database=self.settings.database,
                collection=name,
                description=f"MongoDB collection: {name}",
            )
            for name in sorted(names)
        ]
        return Envelope.success(resources)

    # ---- resources --------------------------------------------------------

    def parse_resource_uri(self, uri: str) -> str:
        """Return the collection addressed by ``uri`` or raise InvalidResourceAddress."""
        match = _RESOURCE_URI_RE.match(uri or "")
        if not match or match.group("scheme") != RESOURCE_SCHEME:
            raise InvalidResourceAddress(uri, "Invalid MongoDB URI format")
        database = match.group("database")
        if database != self.settings.database:
            raise InvalidResourceAddress(
                uri,
                f"Database {database} does not match connected database {self.settings.database}",
            )
        return match.group("collection")

    async def read_resource(self, uri: str) -> Envelope:
        try:
            collection = self.parse_resource_uri(uri)
            await self.gateway.ensure_connected()
            stats = await self.gateway.collection_stats(collection)
            samples = await self.gateway.sample(collection, SAMPLE_SIZE)
        except MongoMCPError as exc:
            return Envelope.failure(_error_info(exc))
        payload = {
            "collection": collection,
            "stats": {
                "count": stats.get("count"),
                "size": stats.get("size"),
                "avgObjSize": stats.get("avgObjSize"),
            },
            "schema": infer_schema(samples),
            "sampleDocuments": samples,
        }
        return Envelope.success(to_jsonable(payload))

    # ---- tools ------------------------------------------------------------

    async def _connected(self) -> None:
        await self.gateway.ensure_connected()

    def decode_arguments(self, name: str, arguments: Optional[Mapping[str, Any]]) -> StrictModel:
        model = catalog.input_model(name)
        if model is None:
            raise UnknownOperation(name)
        try:
            return model.model_validate(dict(arguments or {}))
        except ValidationError as exc:
            raise InvalidArguments(_validation_message(exc)) from exc

    async def call_operation(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> Envelope:
        if name not in self._handlers:
            return Envelope.failure(_error_info(UnknownOperation(name), name))

        started = time.perf_counter()
        try:
            params = self.decode_arguments(name, arguments)
            payload = await self._handlers[name](params)
        except MongoMCPError as exc:
            logger.warning("%s failed: %s: %s", name, exc.kind, exc.message)
            return Envelope.failure(_error_info(exc, name))
        except Exception as exc:
            logger.exception("%s crashed", name)
            return Envelope.failure(ErrorInfo(kind="InternalError", message=str(exc), operation=name))
        logger.debug("%s completed in %.1f ms", name, (time.perf_counter() - started) * 1000)
        return Envelope.success(to_jsonable(payload), operation=name)

    async def _query(self, params: QueryInput) -> Dict[str, Any]:
        filter_obj = parse_filter(params.filter)
        projection = parse_projection(params.projection)
        sort = parse_sort(params.sort)
        await self._connected()
        results, count = await self.gateway.find(
            params.collection,
            filter_obj,
            projection=projection,
            sort=sort,
            skip=normalize_skip(params.skip),
            limit=normalize_limit(params.limit),
        )
        return {"collection": params.collection, "count": count, "results": results}

    async def _count(self, params: CountInput) -> Dict[str, Any]:
        filter_obj = parse_filter(params.filter)
        await self._connected()
        count = await self.gateway.count(params.collection, filter_obj)
        return {"collection": params.collection, "filter": filter_obj, "count": count}

    async def _aggregate(self, params: AggregateInput) -> Dict[str, Any]:
        pipeline = parse_pipeline(params.pipeline)
        await self._connected()
        results = await self.gateway.aggregate(params.collection, pipeline)
        return {"collection": params.collection, "pipeline": pipeline, "results": results}

    async def _distinct(self, params: DistinctInput) -> Dict[str, Any]:
        filter_obj = parse_filter(params.filter)
        await self._connected()
        values = await self.gateway.distinct(params.collection, params.field, filter_obj)
        return {
            "collection": params.collection,
            "field": params.field,
            "distinctValues": values,
            "count": len(values),
        }

    async def _list_databases(self, params: Any) -> Dict[str, Any]:
        await self._connected()
        databases = await self.gateway.list_databases()
        return {
            "currentDatabase": self.settings.database,
            "connectionUri": self.redacted_uri,
            "databases": [
                {"name": db.get("name"), "sizeOnDisk": db.get("sizeOnDisk"), "empty": db.get("empty")}
                for db in databases
            ],
        }

    async def _list_collections(self, params: ListCollectionsInput) -> Dict[str, Any]:
        await self._connected()
        collections = await self.gateway.list_collections(params.database)
        return {
            "database": params.database or self.settings.database,
            "totalCollections": len(collections),
            "collections": collections,
        }

    async def _verify_connection(self, params: Any) -> Dict[str, Any]:
        await self._connected()
        status = await self.gateway.server_status()
        stats = await self.gateway.database_stats()
        return {
            "connected": True,
            "connectionUri": self.redacted_uri,
            "currentDatabase": self.settings.database,
            "serverInfo": {
                "version": status.get("version"),
                "uptime": status.get("uptime"),
                "host": status.get("host"),
            },
            "databaseStats": {
                "collections": stats.get("collections"),
                "dataSize": stats.get("dataSize"),
                "storageSize": stats.get("storageSize"),
                "indexes": stats.get("indexes"),
            },
        }

import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Annotated, Any, Dict, Mapping, Optional, Sequence, Type

from fastmcp import FastMCP
from fastmcp.exceptions import PromptError, ResourceError, ToolError
from fastmcp.prompts import Prompt, PromptArgument
from fastmcp.resources import Resource
from fastmcp.server.providers import Provider
from pydantic import BaseModel, Field, PrivateAttr

import catalog
import serialization
from config import RESOURCE_SCHEME, Settings
from dispatcher import Dispatcher
from models import (
    AggregateInput,
    CountInput,
    DistinctInput,
    Envelope,
    ListCollectionsInput,
    PromptDescriptor,
    QueryInput,
)
from store_gateway import ClientFactory, ConnectionManager, StoreGateway, redact_uri

# ---- Utilities --------------------------------------------------------------
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("mongodb-mcp")

SERVER_NAME = "mongodb-mcp-server"
SERVER_VERSION = "1.0.0"
INSTRUCTIONS = (
    "Read-only access to a MongoDB database: query, count, aggregate and distinct tools, "
    "one resource per collection with an inferred schema, and analysis prompt templates."
)


def _failure_text(envelope: Envelope) -> str:
    return serialization.dumps(envelope.render())


def _present(**arguments: Any) -> Dict[str, Any]:
    return {k: v for k, v in arguments.items() if v is not None}


def _described(model: Type[BaseModel], field: str) -> Any:
    """Parameter metadata for a tool argument, taken from the operation's input model."""
    return Field(description=model.model_fields[field].description)


class CatalogPrompt(Prompt):
    """Prompt template whose arguments come from the prompt catalog."""

    _dispatcher: Any = PrivateAttr(default=None)

    @classmethod
    def from_descriptor(cls, descriptor: PromptDescriptor, dispatcher: Dispatcher) -> "CatalogPrompt":
        prompt = cls(
            name=descriptor.name,
            description=descriptor.description,
            arguments=[
                PromptArgument(name=arg.name, description=arg.description, required=arg.required)
                for arg in descriptor.arguments
            ],
        )
        prompt._dispatcher = dispatcher
        return prompt

    async def render(self, arguments: Optional[Mapping[str, Any]] = None) -> str:
        envelope = self._dispatcher.get_prompt(self.name, arguments)
        if not envelope.ok:
            raise PromptError(_failure_text(envelope))
        return envelope.payload["messages"][0]["text"]


class CollectionResources(Provider):
    """Exposes every collection of the configured database as a readable resource."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        super().__init__()
        self.dispatcher = dispatcher

    def _resource(self, uri: str, name: str, description: str) -> Resource:
        dispatcher = self.dispatcher

        async def read() -> str:
            envelope = await dispatcher.read_resource(uri)
            if not envelope.ok:
                raise ResourceError(_failure_text(envelope))
            return serialization.dumps(envelope.payload)

        return Resource.from_function(
            read,
            uri=uri,
            name=name,
            description=description,
            mime_type="application/json",
        )

    async def _list_resources(self) -> Sequence[Resource]:
        envelope = await self.dispatcher.list_resources()
        if not envelope.ok:
            logger.warning("Listing collections failed: %s", envelope.error.message)
            return []
        return [self._resource(r.uri, r.name, r.description) for r in envelope.payload]

    async def _get_resource(self, uri: str, version: Any = None) -> Optional[Resource]:
        # Address validation happens on read so malformed URIs report InvalidResourceAddress.
        if not str(uri).startswith(f"{RESOURCE_SCHEME}://"):
            return None
        name = str(uri).rsplit("/", 1)[-1]
        return self._resource(str(uri), name, f"MongoDB collection: {name}")


def create_server(
    settings: Optional[Settings] = None,
    client_factory: Optional[ClientFactory] = None,
) -> FastMCP:
    """Build the FastMCP server around a single lazily-connected MongoDB client."""
    settings = settings or Settings.from_env()
    connections = ConnectionManager(settings, client_factory)
    dispatcher = Dispatcher(settings, StoreGateway(connections))

    @asynccontextmanager
    async def lifespan(server: FastMCP):
        try:
            await connections.ensure_connected()
        except Exception:
            # The first request retries; a cold store must not stop the server.
            logger.warning("MongoDB unavailable at startup (%s); will retry on first request",
                           redact_uri(settings.uri))
        try:
            yield {"dispatcher": dispatcher}
        finally:
            await connections.close()

    mcp = FastMCP(
        name=SERVER_NAME,
        version=SERVER_VERSION,
        instructions=INSTRUCTIONS,
        lifespan=lifespan,
        providers=[CollectionResources(dispatcher)],
    )

    async def run_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        envelope = await dispatcher.call_operation(name, arguments)
        if not envelope.ok:
            raise ToolError(_failure_text(envelope))
        return envelope.payload

    descriptions = {op.name: op.description for op in dispatcher.list_operations().payload}

    # ---- Tools ---------------------------------------------------------------

    @mcp.tool(name=catalog.QUERY, title="MongoDB: Query", description=descriptions[catalog.QUERY],
              annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_query(
        collection: Annotated[str, _described(QueryInput, "collection")],
        filter: Annotated[Optional[str], _described(QueryInput, "filter")] = None,
        projection: Annotated[Optional[str], _described(QueryInput, "projection")] = None,
        sort: Annotated[Optional[str], _described(QueryInput, "sort")] = None,
        limit: Annotated[Optional[int], _described(QueryInput, "limit")] = None,
        skip: Annotated[Optional[int], _described(QueryInput, "skip")] = None,
    ) -> Dict[str, Any]:
        """Find documents in a collection.

        Args:
            collection: Name of the collection to query
            filter: JSON filter, e.g. '{"status": "active"}'
            projection: JSON projection, e.g. '{"name": 1, "_id": 0}'
            sort: JSON sort specification, e.g. '{"createdAt": -1}'
            limit: Maximum documents to return (default 100)
            skip: Documents to skip (default 0)

        Returns:
            Dict with collection, count and results
        """
        return await run_tool(catalog.QUERY, _present(
            collection=collection, filter=filter, projection=projection,
            sort=sort, limit=limit, skip=skip,
        ))

    @mcp.tool(name=catalog.COUNT, title="MongoDB: Count", description=descriptions[catalog.COUNT],
              annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_count(
        collection: Annotated[str, _described(CountInput, "collection")],
        filter: Annotated[Optional[str], _described(CountInput, "filter")] = None,
    ) -> Dict[str, Any]:
        return await run_tool(catalog.COUNT, _present(collection=collection, filter=filter))

    @mcp.tool(name=catalog.AGGREGATE, title="MongoDB: Aggregate", description=descriptions[catalog.AGGREGATE],
              annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_aggregate(
        collection: Annotated[str, _described(AggregateInput, "collection")],
        pipeline: Annotated[str, _described(AggregateInput, "pipeline")],
    ) -> Dict[str, Any]:
        """Run an aggregation pipeline given as a JSON array of stage objects."""
        return await run_tool(catalog.AGGREGATE, {"collection": collection, "pipeline": pipeline})

    @mcp.tool(name=catalog.DISTINCT, title="MongoDB: Distinct", description=descriptions[catalog.DISTINCT],
              annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_distinct(
        collection: Annotated[str, _described(DistinctInput, "collection")],
        field: Annotated[str, _described(DistinctInput, "field")],
        filter: Annotated[Optional[str], _described(DistinctInput, "filter")] = None,
    ) -> Dict[str, Any]:
        return await run_tool(catalog.DISTINCT, _present(collection=collection, field=field, filter=filter))

    @mcp.tool(name=catalog.LIST_DATABASES, title="MongoDB: List Databases",
              description=descriptions[catalog.LIST_DATABASES], annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_list_databases() -> Dict[str, Any]:
        return await run_tool(catalog.LIST_DATABASES, {})

    @mcp.tool(name=catalog.LIST_COLLECTIONS, title="MongoDB: List Collections",
              description=descriptions[catalog.LIST_COLLECTIONS], annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_list_collections(
        database: Annotated[Optional[str], _described(ListCollectionsInput, "database")] = None,
    ) -> Dict[str, Any]:
        return await run_tool(catalog.LIST_COLLECTIONS, _present(database=database))

    @mcp.tool(name=catalog.VERIFY_CONNECTION, title="MongoDB: Verify Connection",
              description=descriptions[catalog.VERIFY_CONNECTION], annotations=catalog.READ_ONLY_ANNOTATIONS)
    async def mongodb_verify_connection() -> Dict[str, Any]:
        return await run_tool(catalog.VERIFY_CONNECTION, {})

    # ---- Prompts -------------------------------------------------------------

    for descriptor in dispatcher.list_prompts().payload:
        mcp.add_prompt(CatalogPrompt.from_descriptor(descriptor, dispatcher))

    return mcp


def _terminate(signum, frame):
    # Unwind through the lifespan so the MongoDB client is closed.
    raise KeyboardInterrupt


def main() -> None:
    settings = Settings.from_env()
    logger.info("Starting %s (database=%s, uri=%s, transport=%s)",
                SERVER_NAME, settings.database, redact_uri(settings.uri), settings.transport)
    signal.signal(signal.SIGTERM, _terminate)
    mcp = create_server(settings)
    try:
        mcp.run(transport=settings.transport)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except Exception:
        logger.exception("MCP server crashed")
        raise


if __name__ == "__main__":
    main()

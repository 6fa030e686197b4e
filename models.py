"""Pydantic models for the MongoDB MCP server.

This module defines:
- One validated input model per tool (the decoded form of a tool call)
- Catalog descriptors for tools, prompts and collection resources
- The result envelope returned by the dispatcher for every request

Query fragments (filter, projection, sort, pipeline) stay as JSON text here;
they are decoded by ``query_fragments`` after the argument bag validates.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Base Config ---

class StrictModel(BaseModel):
    """Base model with strict validation."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )


class FrozenModel(BaseModel):
    """Immutable catalog/record models."""
    model_config = ConfigDict(frozen=True)


# --- Tool Inputs ---

class CollectionInput(StrictModel):
    collection: str = Field(
        ...,
        description="Name of the collection",
        min_length=1,
    )


class QueryInput(CollectionInput):
    """Input for mongodb_query tool."""
    collection: str = Field(
        ...,
        description="Name of the collection to query",
        min_length=1,
    )
    filter: Optional[str] = Field(
        default=None,
        description="JSON string of MongoDB query filter (e.g., '{\"status\": \"active\"}')",
    )
    projection: Optional[str] = Field(
        default=None,
        description="JSON string of fields to include/exclude (e.g., '{\"name\": 1, \"_id\": 0}')",
    )
    sort: Optional[str] = Field(
        default=None,
        description="JSON string of sort specification (e.g., '{\"createdAt\": -1}')",
    )
    limit: Optional[int] = Field(
        default=None,
        description="Maximum number of documents to return (default: 100)",
    )
    skip: Optional[int] = Field(
        default=None,
        description="Number of documents to skip",
    )


class CountInput(CollectionInput):
    """Input for mongodb_count tool."""
    filter: Optional[str] = Field(
        default=None,
        description="JSON string of MongoDB query filter",
    )


class AggregateInput(CollectionInput):
    """Input for mongodb_aggregate tool."""
    pipeline: str = Field(
        ...,
        description="JSON string of aggregation pipeline stages array",
    )


class DistinctInput(CollectionInput):
    """Input for mongodb_distinct tool."""
    field: str = Field(
        ...,
        description="Name of the field to get distinct values from",
        min_length=1,
    )
    filter: Optional[str] = Field(
        default=None,
        description="JSON string of MongoDB query filter",
    )


class ListDatabasesInput(StrictModel):
    """Input for mongodb_list_databases tool (no arguments)."""


class ListCollectionsInput(StrictModel):
    """Input for mongodb_list_collections tool."""
    database: Optional[str] = Field(
        default=None,
        description="Optional: database name to list collections from (uses current database if not specified)",
    )

    @field_validator("database")
    @classmethod
    def _blank_is_current(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class VerifyConnectionInput(StrictModel):
    """Input for mongodb_verify_connection tool (no arguments)."""


# --- Catalog ---

class OperationDescriptor(FrozenModel):
    name: str
    description: str
    input_schema: Dict[str, Any]


class PromptArgument(FrozenModel):
    name: str
    description: str
    required: bool = False


class PromptDescriptor(FrozenModel):
    name: str
    description: str
    arguments: List[PromptArgument] = Field(default_factory=list)


class ResourceDescriptor(FrozenModel):
    uri: str
    name: str
    database: str
    collection: str
    description: str
    mime_type: str = "application/json"


# --- Envelope ---

class ErrorInfo(BaseModel):
    kind: str
    message: str
    title: str = "Tool Execution Failed"
    operation: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class Envelope(BaseModel):
    """Uniform result of every dispatcher request; exactly one of payload/error is set."""
    ok: bool
    operation: Optional[str] = None
    payload: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, payload: Any, operation: Optional[str] = None) -> "Envelope":
        return cls(ok=True, operation=operation, payload=payload)

    @classmethod
    def failure(cls, error: ErrorInfo) -> "Envelope":
        return cls(ok=False, operation=error.operation, error=error)

    def render(self) -> Dict[str, Any]:
        """Caller-facing body: the payload on success, the flat error object otherwise."""
        if self.ok:
            return self.payload
        err = self.error
        body: Dict[str, Any] = {"error": err.title, "kind": err.kind}
        if err.operation:
            body["tool"] = err.operation
        body["message"] = err.message
        body.update(err.context)
        return body

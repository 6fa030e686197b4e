"""Static catalog of tools and prompt templates exposed by the server."""

from typing import Any, Dict, List, Mapping, Optional, Type

from errors import InvalidArguments, UnknownPrompt
from models import (
    AggregateInput,
    CountInput,
    DistinctInput,
    ListCollectionsInput,
    ListDatabasesInput,
    OperationDescriptor,
    PromptArgument,
    PromptDescriptor,
    QueryInput,
    StrictModel,
    VerifyConnectionInput,
)

QUERY = "mongodb_query"
COUNT = "mongodb_count"
AGGREGATE = "mongodb_aggregate"
DISTINCT = "mongodb_distinct"
LIST_DATABASES = "mongodb_list_databases"
LIST_COLLECTIONS = "mongodb_list_collections"
VERIFY_CONNECTION = "mongodb_verify_connection"

READ_ONLY_ANNOTATIONS = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": False,
}

# name -> (description, input model)
OPERATIONS: Dict[str, tuple] = {
    QUERY: (
        "Execute a read-only query on a MongoDB collection with filtering, projection, sorting, and pagination",
        QueryInput,
    ),
    COUNT: ("Count documents in a collection matching a filter", CountInput),
    AGGREGATE: ("Run an aggregation pipeline on a collection", AggregateInput),
    DISTINCT: ("Get distinct values for a field in a collection", DistinctInput),
    LIST_DATABASES: ("List all available databases in the MongoDB instance", ListDatabasesInput),
    LIST_COLLECTIONS: ("List all collections in the current database with their stats", ListCollectionsInput),
    VERIFY_CONNECTION: ("Verify MongoDB connection and show current database information", VerifyConnectionInput),
}


def _input_schema(model: Type[StrictModel]) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.pop("description", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("properties", {})
    return schema


OPERATION_CATALOG: List[OperationDescriptor] = [
    OperationDescriptor(name=name, description=description, input_schema=_input_schema(model))
    for name, (description, model) in OPERATIONS.items()
]


def input_model(name: str) -> Optional[Type[StrictModel]]:
    entry = OPERATIONS.get(name)
    return entry[1] if entry else None


def describe(name: str) -> str:
    return OPERATIONS[name][0]


# --- Prompts ---

ANALYZE_COLLECTION = "analyze_collection"
FIND_RECENT_RECORDS = "find_recent_records"
AGGREGATE_SUMMARY = "aggregate_summary"

PROMPT_CATALOG: List[PromptDescriptor] = [
    PromptDescriptor(
        name=ANALYZE_COLLECTION,
        description="Analyze a MongoDB collection and provide insights",
        arguments=[
            PromptArgument(name="collection", description="Name of the collection to analyze", required=True),
        ],
    ),
    PromptDescriptor(
        name=FIND_RECENT_RECORDS,
        description="Find recent records in a collection",
        arguments=[
            PromptArgument(name="collection", description="Name of the collection", required=True),
            PromptArgument(name="dateField", description="Name of the date field to sort by", required=True),
            PromptArgument(name="limit", description="Number of records to return", required=False),
        ],
    ),
    PromptDescriptor(
        name=AGGREGATE_SUMMARY,
        description="Create an aggregation summary for a collection",
        arguments=[
            PromptArgument(name="collection", description="Name of the collection", required=True),
            PromptArgument(name="groupBy", description="Field to group by", required=True),
            PromptArgument(name="metric", description="Field to calculate metrics on", required=False),
        ],
    ),
]

_PROMPTS = {p.name: p for p in PROMPT_CATALOG}

DEFAULT_RECENT_LIMIT = 10


def _recent_limit(raw: Any) -> int:
    if isinstance(raw, bool):
        return DEFAULT_RECENT_LIMIT
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return DEFAULT_RECENT_LIMIT
    return DEFAULT_RECENT_LIMIT


def render_prompt(name: str, arguments: Optional[Mapping[str, Any]] = None) -> str:
    """Render the instruction text of a prompt template. Nothing is executed."""
    prompt = _PROMPTS.get(name)
    if prompt is None:
        raise UnknownPrompt(name)
    args = dict(arguments or {})
    missing = [a.name for a in prompt.arguments if a.required and not args.get(a.name)]
    if missing:
        raise InvalidArguments(
            f"Missing required prompt arguments: {', '.join(missing)}",
            prompt=name,
            missing=missing,
        )

    collection = args["collection"]
    if name == ANALYZE_COLLECTION:
        return (
            f'Please analyze the MongoDB collection "{collection}". Provide insights on:\n'
            "1. Data distribution and patterns\n"
            "2. Common field values and their frequencies\n"
            "3. Data quality observations (missing fields, outliers, etc.)\n"
            "4. Recommendations for queries or further analysis\n"
            "\n"
            f"Use the {QUERY} tool to explore the data."
        )
    if name == FIND_RECENT_RECORDS:
        limit = _recent_limit(args.get("limit"))
        return (
            f'Find the {limit} most recent records from the "{collection}" collection, '
            f'sorted by "{args["dateField"]}" in descending order. '
            f"Use the {QUERY} tool with appropriate parameters."
        )
    metric = args.get("metric")
    metric_clause = f' with calculations on "{metric}"' if metric else ""
    return (
        f'Create an aggregation summary for the "{collection}" collection, '
        f'grouped by "{args["groupBy"]}"{metric_clause}. '
        f"Use the {AGGREGATE} tool to perform the analysis."
    )

import json
from typing import Any, List, Tuple

from bson import json_util
from bson.json_util import JSONOptions, RELAXED_JSON_OPTIONS

_JSON_OPTIONS: JSONOptions = RELAXED_JSON_OPTIONS


def to_jsonable(value: Any) -> Any:
    """Convert BSON-bearing structures (ObjectId, datetime, Decimal128...) into plain JSON types."""
    return json.loads(json_util.dumps(value, json_options=_JSON_OPTIONS))


def dumps(value: Any, indent: int = 2) -> str:
    return json_util.dumps(value, json_options=_JSON_OPTIONS, indent=indent, ensure_ascii=False)


def _query_pairs_hook(pairs: List[Tuple[str, Any]]) -> Any:
    document = dict(pairs)
    # In query text "$regex" is the operator, not legacy Extended JSON; its siblings ($options, $ne, ...) stay.
    if "$regex" in document:
        return document
    return json_util.object_hook(document, _JSON_OPTIONS)


def loads(text: str) -> Any:
    """Parse query JSON, decoding Extended JSON values ($oid, $date, $regularExpression, ...)."""
    return json.loads(text, object_pairs_hook=_query_pairs_hook)

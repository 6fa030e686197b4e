from typing import Any, Dict, Iterable, List, Mapping

from bson.decimal128 import Decimal128
from bson.int64 import Int64

MAX_EXAMPLES = 3

_NUMBER_TYPES = (int, float, Decimal128, Int64)


def classify(value: Any) -> str:
    """Coarse JSON-ish type name for a decoded BSON value."""
    if isinstance(value, (list, tuple)):
        return "array"
    if value is None:
        return "null"
    # bool is an int subclass, so it has to be checked first.
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, _NUMBER_TYPES):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def infer_schema(documents: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Summarise field types and examples from a small document sample.

    The type recorded for a field is the one observed on its first occurrence;
    later occurrences with a different type are not reconciled. Up to three
    non-null values are kept as examples. Fields keep first-discovery order.
    """
    schema: Dict[str, Dict[str, Any]] = {}
    for doc in documents:
        for key, value in doc.items():
            entry = schema.get(key)
            if entry is None:
                entry = {"type": classify(value), "examples": []}
                schema[key] = entry
            examples: List[Any] = entry["examples"]
            if value is not None and len(examples) < MAX_EXAMPLES:
                examples.append(value)
    return schema

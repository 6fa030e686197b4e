"""Decoding of textual query fragments.

Filters, projections, sort specs and aggregation pipelines arrive from callers
as JSON text. ``decode`` turns one of them into the structure the driver
expects, or reports why it could not, without raising. Extended JSON is
accepted so callers can express ObjectIds and dates, e.g.
``{"_id": {"$oid": "65f0c0ffee0000000000abcd"}}``.
"""

from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from bson.errors import BSONError

from config import DEFAULT_QUERY_LIMIT
from errors import MalformedFragment
import serialization


class FragmentKind(str, Enum):
    FILTER = "filter"
    PROJECTION = "projection"
    SORT = "sort"
    PIPELINE = "pipeline"


SortSpec = List[Tuple[str, Any]]


class Decoded(NamedTuple):
    value: Any = None
    error: Optional[MalformedFragment] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


def _default(kind: FragmentKind, field: str) -> Decoded:
    if kind is FragmentKind.FILTER:
        return Decoded({})
    if kind is FragmentKind.PIPELINE:
        return Decoded(error=MalformedFragment(field, None, "pipeline is required"))
    return Decoded(None)


def decode(kind: FragmentKind, text: Optional[str], field: Optional[str] = None) -> Decoded:
    """Decode ``text`` as a fragment of ``kind``.

    Absent or blank text yields the kind's identity default: ``{}`` for a
    filter, ``None`` for projection and sort. A pipeline has no default and is
    reported as malformed when missing.

    Args:
        kind: Which fragment the text represents
        text: Raw JSON text as supplied by the caller
        field: Argument name reported in errors (defaults to the kind)

    Returns:
        Decoded with ``value`` set on success, ``error`` set otherwise.
        Sort specs are returned as an ordered list of (field, direction).
    """
    kind = FragmentKind(kind)
    field = field or kind.value
    if text is None or (isinstance(text, str) and not text.strip()):
        return _default(kind, field)
    if not isinstance(text, str):
        return Decoded(error=MalformedFragment(field, repr(text), "expected a JSON string"))

    try:
        parsed = serialization.loads(text)
    except (ValueError, TypeError, BSONError) as exc:
        return Decoded(error=MalformedFragment(field, text, f"not valid JSON ({exc})"))

    if kind is FragmentKind.PIPELINE:
        if not isinstance(parsed, list):
            return Decoded(error=MalformedFragment(field, text, "expected a JSON array of stages"))
        for index, stage in enumerate(parsed):
            if not isinstance(stage, dict):
                return Decoded(error=MalformedFragment(field, text, f"stage {index} is not a JSON object"))
        return Decoded(parsed)

    if not isinstance(parsed, dict):
        return Decoded(error=MalformedFragment(field, text, "expected a JSON object"))
    if kind is FragmentKind.SORT:
        return Decoded(_sort_pairs(parsed))
    return Decoded(parsed)


def _sort_pairs(spec: Dict[str, Any]) -> Optional[SortSpec]:
    # Key order of the JSON object is the sort precedence.
    pairs = list(spec.items())
    return pairs or None


def parse_filter(text: Optional[str], field: str = "filter") -> Dict[str, Any]:
    return decode(FragmentKind.FILTER, text, field).unwrap()


def parse_projection(text: Optional[str], field: str = "projection") -> Optional[Dict[str, Any]]:
    return decode(FragmentKind.PROJECTION, text, field).unwrap()


def parse_sort(text: Optional[str], field: str = "sort") -> Optional[SortSpec]:
    return decode(FragmentKind.SORT, text, field).unwrap()


def parse_pipeline(text: Optional[str], field: str = "pipeline") -> List[Dict[str, Any]]:
    return decode(FragmentKind.PIPELINE, text, field).unwrap()


def normalize_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_QUERY_LIMIT
    return int(limit)


def normalize_skip(skip: Optional[int]) -> int:
    if skip is None or skip < 0:
        return 0
    return int(skip)

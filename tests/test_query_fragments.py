import datetime

import pytest
from bson import ObjectId
from bson.regex import Regex

from errors import MalformedFragment
from query_fragments import (
    FragmentKind,
    decode,
    normalize_limit,
    normalize_skip,
    parse_filter,
    parse_pipeline,
    parse_projection,
    parse_sort,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize("text", [None, "", "   "])
def test_absent_fragments_use_identity_defaults(text):
    assert parse_filter(text) == {}
    assert parse_projection(text) is None
    assert parse_sort(text) is None


def test_missing_pipeline_is_malformed():
    result = decode(FragmentKind.PIPELINE, None)
    assert not result.ok
    assert result.error.field == "pipeline"
    assert "required" in result.error.message


def test_filter_decodes_object():
    assert parse_filter('{"status": "active", "age": {"$gt": 21}}') == {
        "status": "active",
        "age": {"$gt": 21},
    }


def test_invalid_json_reports_field_and_raw_text():
    result = decode(FragmentKind.FILTER, "{not json")
    assert not result.ok
    assert isinstance(result.error, MalformedFragment)
    assert result.error.field == "filter"
    assert result.error.raw == "{not json"
    assert result.error.message.startswith("Invalid filter:")


def test_decode_never_raises_on_bad_input():
    for kind in FragmentKind:
        for text in ["[", "nope", "12", '"str"', "null"]:
            result = decode(kind, text)
            assert not result.ok
            assert result.value is None


def test_unwrap_raises_the_decode_error():
    with pytest.raises(MalformedFragment) as info:
        parse_projection("[1, 2]")
    assert info.value.field == "projection"


@pytest.mark.parametrize("text", ["[1, 2]", "42", '"status"', "null"])
def test_filter_must_be_an_object(text):
    assert not decode(FragmentKind.FILTER, text).ok


def test_custom_field_name_is_reported():
    result = decode(FragmentKind.FILTER, "oops", field="query")
    assert result.error.field == "query"
    assert result.error.message.startswith("Invalid query:")


def test_non_string_input_is_malformed():
    result = decode(FragmentKind.FILTER, {"a": 1})
    assert not result.ok
    assert "JSON string" in result.error.message


def test_sort_preserves_key_order():
    assert parse_sort('{"createdAt": -1, "name": 1}') == [("createdAt", -1), ("name", 1)]
    assert parse_sort('{"name": 1, "createdAt": -1}') == [("name", 1), ("createdAt", -1)]


def test_empty_sort_object_means_no_sort():
    assert parse_sort("{}") is None


def test_pipeline_requires_array_of_objects():
    assert parse_pipeline('[{"$match": {"a": 1}}, {"$limit": 5}]') == [
        {"$match": {"a": 1}},
        {"$limit": 5},
    ]
    not_array = decode(FragmentKind.PIPELINE, '{"$match": {}}')
    assert "array" in not_array.error.message
    bad_stage = decode(FragmentKind.PIPELINE, '[{"$match": {}}, 3]')
    assert "stage 1" in bad_stage.error.message


def test_extended_json_values_are_decoded():
    decoded = parse_filter(
        '{"_id": {"$oid": "65f0c0ffee0000000000abcd"}, "at": {"$date": "2024-03-01T00:00:00Z"}}'
    )
    assert decoded["_id"] == ObjectId("65f0c0ffee0000000000abcd")
    assert isinstance(decoded["at"], datetime.datetime)
    assert decoded["at"].year == 2024


@pytest.mark.parametrize("raw,expected", [(None, 100), (0, 100), (-5, 100), (1, 1), (250, 250)])
def test_normalize_limit(raw, expected):
    assert normalize_limit(raw) == expected


@pytest.mark.parametrize("raw,expected", [(None, 0), (-1, 0), (0, 0), (7, 7)])
def test_normalize_skip(raw, expected):
    assert normalize_skip(raw) == expected


def test_regex_operator_keeps_sibling_operators():
    assert parse_filter('{"name": {"$regex": "a", "$ne": "Grace"}}') == {
        "name": {"$regex": "a", "$ne": "Grace"}
    }
    assert parse_filter('{"status": {"$regex": "^s", "$options": "i", "$nin": ["shipped"]}}') == {
        "status": {"$regex": "^s", "$options": "i", "$nin": ["shipped"]}
    }


def test_canonical_regular_expression_is_still_decoded():
    decoded = parse_filter('{"name": {"$regularExpression": {"pattern": "^A", "options": "i"}}}')
    assert isinstance(decoded["name"], Regex)
    assert decoded["name"].pattern == "^A"

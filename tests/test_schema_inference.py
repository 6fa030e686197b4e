import pytest
from bson import Decimal128, ObjectId

from schema_inference import MAX_EXAMPLES, classify, infer_schema

pytestmark = pytest.mark.unit


def test_single_document():
    schema = infer_schema([{"a": 1, "b": "x", "c": [1, 2]}])
    assert schema == {
        "a": {"type": "number", "examples": [1]},
        "b": {"type": "string", "examples": ["x"]},
        "c": {"type": "array", "examples": [[1, 2]]},
    }


def test_examples_are_capped():
    docs = [{"n": i} for i in range(5)]
    schema = infer_schema(docs)
    assert schema["n"]["examples"] == [0, 1, 2]
    assert len(schema["n"]["examples"]) == MAX_EXAMPLES


def test_first_observed_type_wins():
    schema = infer_schema([{"v": "text"}, {"v": 5}])
    assert schema["v"]["type"] == "string"
    assert schema["v"]["examples"] == ["text", 5]


def test_null_values_are_typed_but_not_examples():
    schema = infer_schema([{"x": None}, {"x": 3}])
    assert schema["x"] == {"type": "null", "examples": [3]}


def test_fields_keep_discovery_order():
    schema = infer_schema([{"b": 1}, {"a": 1, "b": 2}, {"c": True}])
    assert list(schema) == ["b", "a", "c"]


def test_empty_sample():
    assert infer_schema([]) == {}


@pytest.mark.parametrize("value,expected", [
    (True, "boolean"),
    (False, "boolean"),
    (3, "number"),
    (2.5, "number"),
    (Decimal128("1.10"), "number"),
    ("s", "string"),
    ([], "array"),
    (None, "null"),
    ({"k": 1}, "object"),
    (ObjectId(), "object"),
])
def test_classify(value, expected):
    assert classify(value) == expected

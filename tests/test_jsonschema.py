import json
from dataclasses import dataclass

import pytest

from mcpsdk.jsonschema import (
    JSONError,
    generate_json_schema,
    merge_json_objects,
    parse_json,
    validate_against_schema,
)


@dataclass
class Sample:
    name: str
    age: int
    valid: bool


def test_generate_json_schema_from_mapping():
    schema = json.loads(generate_json_schema({"name": "Test", "age": 30, "isValid": True}))
    assert schema["type"] == "object"
    example = schema["example"]
    assert example["name"] == "Test"
    assert example["age"] == 30
    assert example["isValid"] is True


def test_generate_json_schema_from_dataclass():
    schema = json.loads(generate_json_schema(Sample("Test", 30, True)))
    assert schema == {"type": "object", "example": {"name": "Test", "age": 30, "valid": True}}


def test_generate_json_schema_unserialisable():
    with pytest.raises(JSONError, match="failed to marshal example"):
        generate_json_schema({"bad": object()})


def test_validate_against_schema():
    schema = '{"type": "object"}'
    validate_against_schema('{"name": "Test", "age": 30, "isValid": true}', schema)
    with pytest.raises(JSONError, match="invalid JSON"):
        validate_against_schema('{"name": "Test", "age": 30, "isValid": true', schema)


def test_merge_no_objects():
    assert merge_json_objects() == "{}"


def test_merge_single_object_returned_unchanged():
    obj = '{"a": 1, "b": 2}'
    assert merge_json_objects(obj) == obj


def test_merge_multiple_objects():
    result = merge_json_objects('{"a": 1, "b": 2}', '{"b": 3, "c": 4}')
    assert json.loads(result) == {"a": 1, "b": 3, "c": 4}
    assert result == '{"a":1,"b":3,"c":4}'


def test_merge_invalid_object():
    with pytest.raises(JSONError):
        merge_json_objects('{"a": 1, "b": 2}', '{"invalid": true')


def test_merge_non_object():
    with pytest.raises(JSONError):
        merge_json_objects('{"a": 1}', "[1, 2]")


def test_parse_json_into_dataclass():
    value = parse_json('{"name": "Test", "age": 30, "valid": true, "extra": 1}', Sample)
    assert value == Sample("Test", 30, True)


def test_parse_json_plain_factory():
    assert parse_json(b"[1, 2, 3]", tuple) == (1, 2, 3)


def test_parse_json_invalid():
    with pytest.raises(JSONError, match="data: {\"name\": \"Test\""):
        parse_json('{"name": "Test"', Sample)
"""Small helpers for working with raw JSON documents and simple schemas."""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Callable, TypeVar, Union

T = TypeVar("T")

RawJSON = Union[str, bytes, bytearray]


class JSONError(ValueError):
    """Raised when a JSON document cannot be encoded, decoded or merged."""


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def _loads(data: RawJSON) -> Any:
    return json.loads(data)


def generate_json_schema(value: Any) -> str:
    """Build a minimal object schema that embeds ``value`` as its example."""
    try:
        example = json.dumps(_to_jsonable(value))
    except (TypeError, ValueError) as exc:
        raise JSONError(f"failed to marshal example: {exc}") from exc
    return f'{{"type": "object", "example": {example}}}'


def validate_against_schema(data: RawJSON, schema: RawJSON) -> None:
    """Check that ``data`` is well-formed JSON; raise :class:`JSONError` if not."""
    try:
        _loads(data)
    except (TypeError, ValueError) as exc:
        raise JSONError(f"invalid JSON: {exc}") from exc


def merge_json_objects(*args: RawJSON) -> RawJSON:
    """Merge JSON objects; keys from later objects win.

    With no arguments ``"{}"`` is returned; a single argument is returned as is.
    """
    if not args:
        return "{}"
    if len(args) == 1:
        return args[0]

    merged: dict[str, Any] = {}
    for raw in args:
        try:
            current = _loads(raw)
        except (TypeError, ValueError) as exc:
            raise JSONError(f"failed to unmarshal object: {exc}") from exc
        if current is None:
            continue
        if not isinstance(current, dict):
            raise JSONError(
                f"failed to unmarshal object: expected a JSON object, got {type(current).__name__}"
            )
        merged.update(current)

    try:
        return json.dumps(merged, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise JSONError(f"failed to marshal merged object: {exc}") from exc


def parse_json(data: RawJSON, factory: Callable[..., T]) -> T:
    """Decode ``data`` and build a value with ``factory``.

    Dataclass factories receive the object's keys as keyword arguments, with
    unknown keys ignored; any other factory receives the decoded value.
    """
    text = data.decode("utf-8", "replace") if isinstance(data, (bytes, bytearray)) else data
    try:
        decoded = _loads(data)
        if dataclasses.is_dataclass(factory) and isinstance(decoded, dict):
            names = {f.name for f in dataclasses.fields(factory)}
            return factory(**{k: v for k, v in decoded.items() if k in names})
        return factory(decoded)
    except (TypeError, ValueError) as exc:
        raise JSONError(f"failed to unmarshal JSON: {exc} (data: {text})") from exc
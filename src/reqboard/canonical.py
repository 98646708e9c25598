from __future__ import annotations

import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import rfc8785
from pydantic import BaseModel

from .errors import ParseError

_PASSTHROUGH_TYPES = (bool, int, float, str, type(None))


class SerializationError(TypeError):
    """A value cannot be turned into canonical storage JSON."""


def _normalize(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Recursively convert a value into JSON-primitive types.

    Pydantic models are dumped in JSON mode. Sets and frozensets become
    sorted lists so that the stored text is stable across runs.
    """
    if isinstance(value, Enum):
        return _normalize(value.value)

    if isinstance(value, _PASSTHROUGH_TYPES):
        return value

    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(mode="json"))

    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]

    if isinstance(value, (set, frozenset)):
        items = [_normalize(item) for item in value]
        try:
            return sorted(items)  # type: ignore[type-var]
        except TypeError as exc:
            raise SerializationError("set members must be mutually comparable to serialize") from exc

    if isinstance(value, (datetime, date, time)):
        return value.isoformat()

    if isinstance(value, UUID):
        return str(value)

    if isinstance(value, Decimal):
        if not value.is_finite():
            raise SerializationError(f"Cannot serialize non-finite Decimal: {value!r}")
        return float(value)

    raise SerializationError(
        f"Cannot serialize type {type(value).__name__} for storage. "
        f"Convert to a JSON-compatible type first."
    )


def to_canonical_json(value: Any) -> str:
    """Serialize a value to deterministic JSON per RFC 8785.

    Two equal values always produce byte-identical text, which lets a
    store verify a write by reading it back and comparing strings.

    Raises:
        SerializationError: If the value (or a nested value) is not representable.
    """
    normalized = _normalize(value)
    try:
        return rfc8785.dumps(normalized).decode("utf-8")
    except rfc8785.CanonicalizationError as exc:
        raise SerializationError(str(exc)) from exc


def parse_json(text: str) -> Any:
    """Parse stored JSON text.

    Raises:
        ParseError: If *text* is not valid JSON.
    """
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc

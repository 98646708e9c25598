"""Structural validators applied to parsed storage values.

A parsed JSON blob is untrusted until a validator accepts it. Any exception
raised by a predicate or coercion counts as a rejection. Each
validator carries a human-readable description for diagnostics and can
report a tagged outcome instead of a bare boolean.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter

T = TypeVar("T")


@dataclass(frozen=True)
class ValidationOutcome(Generic[T]):
    ok: bool
    value: T | None = None
    reason: str = ""


@dataclass(frozen=True)
class Validator(Generic[T]):
    """Predicate plus description, optionally coercing the accepted value."""

    predicate: Callable[[Any], bool]
    description: str
    coerce: Callable[[Any], T] | None = None

    def __call__(self, data: Any) -> bool:
        return self.check(data).ok

    def check(self, data: Any) -> ValidationOutcome[T]:
        try:
            accepted = self.predicate(data)
        except Exception as exc:  # noqa: BLE001
            return ValidationOutcome(ok=False, reason=f"expected {self.description}: {exc}")
        if not accepted:
            return ValidationOutcome(ok=False, reason=f"expected {self.description}")
        if self.coerce is None:
            return ValidationOutcome(ok=True, value=data)
        try:
            return ValidationOutcome(ok=True, value=self.coerce(data))
        except Exception as exc:  # noqa: BLE001
            return ValidationOutcome(ok=False, reason=f"expected {self.description}: {exc}")


def array_validator(item_validator: Callable[[Any], bool] | None = None) -> Validator[list[Any]]:
    """Accept a JSON array, optionally requiring every item to pass *item_validator*."""

    def _predicate(data: Any) -> bool:
        if not isinstance(data, list):
            return False
        if item_validator is None:
            return True
        return all(item_validator(item) for item in data)

    description = "array"
    if isinstance(item_validator, Validator):
        description = f"array of {item_validator.description}"
    return Validator(predicate=_predicate, description=description)


def object_validator(required_keys: Iterable[str]) -> Validator[dict[str, Any]]:
    """Accept a JSON object containing every key in *required_keys*."""
    keys = tuple(required_keys)

    def _predicate(data: Any) -> bool:
        return isinstance(data, dict) and all(key in data for key in keys)

    return Validator(predicate=_predicate, description=f"object with keys: {', '.join(keys)}")


def string_validator(max_length: int | None = None) -> Validator[str]:
    def _predicate(data: Any) -> bool:
        if not isinstance(data, str):
            return False
        return not (max_length and len(data) > max_length)

    description = f"string (max {max_length} chars)" if max_length else "string"
    return Validator(predicate=_predicate, description=description)


def enum_validator(allowed_values: Sequence[str]) -> Validator[str]:
    allowed = tuple(allowed_values)

    def _predicate(data: Any) -> bool:
        return isinstance(data, str) and data in allowed

    return Validator(predicate=_predicate, description=f"enum: {' | '.join(allowed)}")


def model_validator(target: Any) -> Validator[Any]:
    """Validate (and coerce) data against a pydantic model or annotated type.

    The returned validator's ``check`` yields the parsed pydantic value.
    """
    adapter = TypeAdapter(target)
    name = getattr(target, "__name__", repr(target))

    def _predicate(data: Any) -> bool:
        adapter.validate_python(data)
        return True

    return Validator(predicate=_predicate, description=name, coerce=adapter.validate_python)

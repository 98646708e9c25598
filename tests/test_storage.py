from __future__ import annotations

from pathlib import Path

from reqboard.canonical import to_canonical_json
from reqboard.errors import StorageError
from reqboard.models import User
from reqboard.storage import FileMedium, KeyValueStore, MemoryMedium
from reqboard.validators import array_validator, enum_validator, model_validator, object_validator, string_validator


class _LossyMedium(MemoryMedium):
    def get_item(self, key: str) -> str | None:
        value = super().get_item(key)
        return None if value is None else value[:-1]


class _BrokenReadMedium(MemoryMedium):
    def get_item(self, key: str) -> str | None:
        raise StorageError("disk on fire")


class _RecordingMedium(MemoryMedium):
    def __init__(self) -> None:
        super().__init__()
        self.writes: list[str] = []

    def set_item(self, key: str, value: str) -> None:
        self.writes.append(key)
        super().set_item(key, value)


def test_canonical_json_is_key_order_independent() -> None:
    left = {"b": 2, "a": 1, "nested": {"z": 9, "y": [3, 2, 1]}}
    right = {"nested": {"y": [3, 2, 1], "z": 9}, "a": 1, "b": 2}
    assert to_canonical_json(left) == to_canonical_json(right)


def test_set_then_get_round_trips_with_validator() -> None:
    store = KeyValueStore(MemoryMedium())
    assert store.set("board", {"items": [1, 2, 3], "name": "需求"})
    value = store.get("board", None, validator=object_validator(["items", "name"]))
    assert value == {"items": [1, 2, 3], "name": "需求"}


def test_get_missing_key_returns_default() -> None:
    store = KeyValueStore(MemoryMedium())
    assert store.get("missing", [], validator=array_validator()) == []


def test_corrupt_value_returns_default_and_is_removed() -> None:
    medium = MemoryMedium()
    medium.set_item("board", "{not json")
    store = KeyValueStore(medium)

    assert store.get("board", {"fallback": True}) == {"fallback": True}
    assert medium.get_item("board") is None


def test_validator_rejection_returns_default_and_keeps_value() -> None:
    medium = MemoryMedium()
    medium.set_item("board", "[1, 2]")
    store = KeyValueStore(medium)

    assert store.get("board", "default", validator=object_validator(["items"])) == "default"
    assert medium.get_item("board") == "[1, 2]"


def test_model_validator_coerces_value() -> None:
    store = KeyValueStore(MemoryMedium())
    store.set("user", User(id="u1", name="Alice"))
    user = store.get("user", None, validator=model_validator(User))
    assert isinstance(user, User)
    assert user.name == "Alice"


def test_remove_twice_does_not_raise() -> None:
    store = KeyValueStore(MemoryMedium())
    store.set("key", 1)
    assert store.remove("key")
    assert store.remove("key")
    assert store.get("key", None) is None


def test_unavailable_medium_degrades_to_defaults() -> None:
    store = KeyValueStore(MemoryMedium(available=False))
    assert not store.is_available()
    assert store.get("key", "default") == "default"
    assert not store.set("key", 1)
    assert not store.remove("key")
    assert store.clear_by_prefix("k") == 0


def test_quota_exceeded_reports_failed_write() -> None:
    store = KeyValueStore(MemoryMedium(quota_bytes=64))
    assert store.is_available()
    assert not store.set("big", "x" * 500)
    assert store.get("big", None) is None


def test_write_verification_detects_mismatch() -> None:
    store = KeyValueStore(_LossyMedium())
    assert not store.set("key", {"a": 1})


def test_read_error_returns_default() -> None:
    store = KeyValueStore(_BrokenReadMedium())
    assert store.get("key", 42) == 42


def test_clear_by_prefix_removes_matching_keys_only() -> None:
    medium = MemoryMedium()
    store = KeyValueStore(medium)
    for key in ("app-1", "app-2", "other"):
        store.set(key, key)

    assert store.clear_by_prefix("app-") == 2
    assert medium.keys() == ["other"]


def test_clear_removes_everything() -> None:
    medium = MemoryMedium()
    store = KeyValueStore(medium)
    store.set("a", 1)
    store.set("b", 2)
    assert store.clear()
    assert medium.keys() == []


def test_file_medium_round_trip_with_unusual_keys(tmp_path: Path) -> None:
    store = KeyValueStore(FileMedium(tmp_path / "store"))
    assert store.set("team/board:1", {"title": "登录优化"})
    assert store.get("team/board:1", None) == {"title": "登录优化"}
    assert store.medium.keys() == ["team/board:1"]

    reopened = KeyValueStore(FileMedium(tmp_path / "store"))
    assert reopened.get("team/board:1", None) == {"title": "登录优化"}


def test_file_medium_corrupt_file_is_discarded(tmp_path: Path) -> None:
    medium = FileMedium(tmp_path)
    medium.set_item("board", "not json at all")
    store = KeyValueStore(medium)

    assert store.get("board", "default") == "default"
    assert medium.get_item("board") is None


def test_scalar_validators() -> None:
    assert string_validator(max_length=3)("abc")
    assert not string_validator(max_length=3)("abcd")
    assert enum_validator(["pending", "approved"])("approved")
    assert not enum_validator(["pending", "approved"])("maybe")
    assert array_validator(string_validator())(["a", "b"])
    assert not array_validator(string_validator())(["a", 1])


def test_validation_outcome_carries_reason() -> None:
    outcome = object_validator(["version", "state"]).check({"version": 1})
    assert not outcome.ok
    assert "version, state" in outcome.reason


def test_round_trip_when_medium_is_nearly_full() -> None:
    store = KeyValueStore(MemoryMedium(quota_bytes=40))
    assert store.set("k", "x" * 28)

    assert store.is_available()
    assert store.get("k", None) == "x" * 28


def test_reads_do_not_write_to_the_medium() -> None:
    medium = _RecordingMedium()
    store = KeyValueStore(medium)
    store.set("key", {"a": 1})
    medium.writes.clear()

    assert store.get("key", None, validator=object_validator(["a"])) == {"a": 1}
    assert store.get("missing", "default") == "default"
    assert medium.writes == []


def test_file_medium_overlong_key_degrades_instead_of_raising(tmp_path: Path) -> None:
    store = KeyValueStore(FileMedium(tmp_path))
    key = "需求" * 50

    assert store.get(key, "default") == "default"
    assert not store.set(key, 1)
    assert not store.remove(key)


def test_raising_item_predicate_rejects_value() -> None:
    medium = MemoryMedium()
    store = KeyValueStore(medium)
    store.set("tags", ["a", 1])

    validator = array_validator(lambda item: item.startswith("a"))
    assert store.get("tags", [], validator=validator) == []
    assert not validator.check(["a", 1]).ok
    assert medium.get_item("tags") == '["a",1]'

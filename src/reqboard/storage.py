from __future__ import annotations

import errno
import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol, TypeVar
from urllib.parse import quote, unquote

from .canonical import SerializationError, parse_json, to_canonical_json
from .errors import ParseError, QuotaExceeded, StorageError, StorageUnavailable
from .validators import Validator

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PROBE_KEY = "__storage_test__"
_QUOTA_ERRNOS = frozenset({errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)})


# ---------------------------------------------------------------------------
# Storage media
# ---------------------------------------------------------------------------

class StorageMedium(Protocol):
    """Synchronous string key-value medium.

    Implementations raise ``StorageUnavailable`` when the medium cannot be
    used, ``QuotaExceeded`` when a write is refused for lack of space, and
    any other ``StorageError`` for individual operation failures.
    """

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...

    def clear(self) -> None: ...


class MemoryMedium:
    """Dict-backed medium with an optional byte quota."""

    def __init__(self, *, quota_bytes: int | None = None, available: bool = True) -> None:
        self._items: dict[str, str] = {}
        self.quota_bytes = quota_bytes
        self.available = available

    def _ensure_available(self) -> None:
        if not self.available:
            raise StorageUnavailable("memory medium disabled")

    def _used_bytes(self, *, excluding: str | None = None) -> int:
        return sum(
            len(key.encode("utf-8")) + len(value.encode("utf-8"))
            for key, value in self._items.items()
            if key != excluding
        )

    def get_item(self, key: str) -> str | None:
        self._ensure_available()
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._ensure_available()
        if self.quota_bytes is not None:
            needed = self._used_bytes(excluding=key) + len(key.encode("utf-8")) + len(value.encode("utf-8"))
            if needed > self.quota_bytes:
                raise QuotaExceeded(f"writing {key!r} needs {needed} bytes, quota is {self.quota_bytes}")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._ensure_available()
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        self._ensure_available()
        return list(self._items)

    def clear(self) -> None:
        self._ensure_available()
        self._items.clear()


_ITEM_SUFFIX = ".kv"
_LOCK_SUFFIX = ".lock"


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive ``fcntl`` lock on a ``.lock`` sidecar of *path*.

    The sidecar keeps the lock handle stable while the data file itself is
    atomically replaced.
    """
    lock_path = path.with_name(path.name + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to a temp file beside *path*, then ``os.replace`` it in."""
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class FileMedium:
    """Directory-backed medium storing one file per key.

    Keys are percent-encoded into file names, so any string is a valid key.
    Writes are atomic and serialized per key with a file lock.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"storage root {self.root} is not usable: {exc}") from exc
        if not os.access(self.root, os.W_OK):
            raise StorageUnavailable(f"storage root {self.root} is not writable")

    def _path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{_ITEM_SUFFIX}"

    def get_item(self, key: str) -> str | None:
        self._ensure_root()
        path = self._path_for(key)
        try:
            if not path.is_file():
                return None
            raw = path.read_bytes()
        except OSError as exc:
            raise StorageError(f"failed to read {key!r}: {exc}") from exc
        # Undecodable bytes surface to the store as unparseable text.
        return raw.decode("utf-8", errors="replace")

    def set_item(self, key: str, value: str) -> None:
        self._ensure_root()
        path = self._path_for(key)
        try:
            with _locked_file(path):
                _atomic_write_text(path, value)
        except OSError as exc:
            if exc.errno in _QUOTA_ERRNOS:
                raise QuotaExceeded(f"no space left writing {key!r}") from exc
            raise StorageError(f"failed to write {key!r}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        self._ensure_root()
        path = self._path_for(key)
        try:
            with _locked_file(path):
                path.unlink(missing_ok=True)
            path.with_name(path.name + _LOCK_SUFFIX).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"failed to remove {key!r}: {exc}") from exc

    def keys(self) -> list[str]:
        self._ensure_root()
        try:
            return sorted(
                unquote(path.name[: -len(_ITEM_SUFFIX)])
                for path in self.root.iterdir()
                if path.is_file() and path.name.endswith(_ITEM_SUFFIX)
            )
        except OSError as exc:
            raise StorageError(f"failed to list keys under {self.root}: {exc}") from exc

    def clear(self) -> None:
        for key in self.keys():
            self.remove_item(key)


# ---------------------------------------------------------------------------
# KeyValueStore
# ---------------------------------------------------------------------------

class KeyValueStore:
    """Fail-safe structured value store over a ``StorageMedium``.

    No public method raises: reads degrade to the caller's default and
    writes report success as a boolean. Corrupt entries found while
    reading are deleted so they cannot poison later reads.
    """

    def __init__(self, medium: StorageMedium) -> None:
        self.medium = medium

    def is_available(self) -> bool:
        """Probe the medium with a throwaway write and removal.

        A medium that refuses the probe only for lack of space still counts
        as available: its stored values remain readable.
        """
        try:
            self.medium.set_item(_PROBE_KEY, "test")
            self.medium.remove_item(_PROBE_KEY)
        except QuotaExceeded as exc:
            logger.warning("Storage medium is full: %s", exc)
            return True
        except StorageError as exc:
            logger.warning("Storage medium is not available: %s", exc)
            return False
        return True

    def get(self, key: str, default: T, validator: Validator[Any] | None = None) -> T:
        """Read and parse *key*, falling back to *default* on any problem.

        Args:
            key: Storage key.
            default: Value returned when the key is absent or unusable.
            validator: Optional structural check of the parsed value. A
                coercing validator (e.g. ``model_validator``) returns the
                coerced value.

        Returns:
            The stored value or *default*.
        """
        try:
            raw = self.medium.get_item(key)
        except StorageUnavailable as exc:
            logger.warning("Storage not available, using default value for key %s: %s", key, exc)
            return default
        except StorageError as exc:
            logger.error("Failed to read key %s: %s", key, exc)
            return default
        if raw is None:
            return default

        try:
            parsed = parse_json(raw)
        except ParseError as exc:
            logger.error("Discarding corrupt value for key %s: %s", key, exc)
            self._discard(key)
            return default

        if validator is None:
            return parsed
        outcome = validator.check(parsed)
        if not outcome.ok:
            logger.warning("Data validation failed for key %s: %s", key, outcome.reason)
            return default
        return outcome.value  # type: ignore[return-value]

    def set(self, key: str, value: Any) -> bool:
        """Serialize and write *value*, then verify by reading it back.

        Returns:
            True only if the read-back text equals the serialized text.
        """
        try:
            serialized = to_canonical_json(value)
        except SerializationError as exc:
            logger.error("Failed to serialize value for key %s: %s", key, exc)
            return False

        try:
            self.medium.set_item(key, serialized)
            written = self.medium.get_item(key)
        except QuotaExceeded as exc:
            logger.error("Storage quota exceeded writing key %s: %s", key, exc)
            return False
        except StorageUnavailable as exc:
            logger.warning("Storage not available, cannot save key %s: %s", key, exc)
            return False
        except StorageError as exc:
            logger.error("Failed to write key %s: %s", key, exc)
            return False

        if written != serialized:
            logger.error("Write verification failed for key: %s", key)
            return False
        return True

    def remove(self, key: str) -> bool:
        try:
            self.medium.remove_item(key)
        except StorageError as exc:
            logger.error("Failed to remove key %s: %s", key, exc)
            return False
        return True

    def clear(self) -> bool:
        try:
            self.medium.clear()
        except StorageError as exc:
            logger.error("Failed to clear storage: %s", exc)
            return False
        return True

    def clear_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with *prefix*.

        Individual removal failures are logged and skipped.

        Returns:
            Number of matching keys found.
        """
        try:
            matching = [key for key in self.medium.keys() if key.startswith(prefix)]
        except StorageError as exc:
            logger.error("Failed to enumerate keys for prefix %s: %s", prefix, exc)
            return 0

        for key in matching:
            try:
                self.medium.remove_item(key)
            except StorageError as exc:
                logger.warning("Failed to remove key %s during prefix sweep: %s", key, exc)
        return len(matching)

    def _discard(self, key: str) -> None:
        try:
            self.medium.remove_item(key)
        except StorageError as exc:
            logger.warning("Failed to discard corrupt key %s: %s", key, exc)

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    storage_root: str = ".reqboard"
    batch_max_items: int = 100
    requirements_key: str = "requirements-store"
    versions_key: str = "version-store"
    comments_key: str = "comments-store"
    review_sequential: bool = False

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            storage_root=os.getenv("REQBOARD_STORAGE_ROOT", ".reqboard"),
            batch_max_items=_get_env_int("REQBOARD_BATCH_MAX_ITEMS", default=100, minimum=1, maximum=10_000),
            requirements_key=os.getenv("REQBOARD_REQUIREMENTS_KEY", "requirements-store"),
            versions_key=os.getenv("REQBOARD_VERSIONS_KEY", "version-store"),
            comments_key=os.getenv("REQBOARD_COMMENTS_KEY", "comments-store"),
            review_sequential=_get_env_bool("REQBOARD_REVIEW_SEQUENTIAL", default=False),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        if not self.storage_root.strip():
            raise ValueError("REQBOARD_STORAGE_ROOT must be non-empty")

        keys = {
            "REQBOARD_REQUIREMENTS_KEY": self.requirements_key.strip(),
            "REQBOARD_VERSIONS_KEY": self.versions_key.strip(),
            "REQBOARD_COMMENTS_KEY": self.comments_key.strip(),
        }
        for name, value in keys.items():
            if not value:
                raise ValueError(f"{name} must be non-empty")
        if len(set(keys.values())) != len(keys):
            raise ValueError("store keys must be distinct: " + ", ".join(sorted(keys)))

        if self.batch_max_items < 1:
            raise ValueError(f"REQBOARD_BATCH_MAX_ITEMS must be >= 1, got: {self.batch_max_items}")

        return RuntimeSettings(
            storage_root=self.storage_root.strip(),
            batch_max_items=self.batch_max_items,
            requirements_key=keys["REQBOARD_REQUIREMENTS_KEY"],
            versions_key=keys["REQBOARD_VERSIONS_KEY"],
            comments_key=keys["REQBOARD_COMMENTS_KEY"],
            review_sequential=self.review_sequential,
        )

    def storage_path(self, base: Path | None = None) -> Path:
        path = Path(self.storage_root)
        if path.is_absolute():
            return path
        return (base if base is not None else Path.cwd()) / path


def load_env_file(root: Path | None = None) -> bool:
    """Load a ``.env`` file from *root* (default: cwd) into the environment.

    Existing environment variables win over values from the file.

    Returns:
        True if a file was found and loaded.
    """
    env_path = (root if root is not None else Path.cwd()) / ".env"
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got: {raw!r}")

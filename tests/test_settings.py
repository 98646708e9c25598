from __future__ import annotations

import os
from pathlib import Path

import pytest

from reqboard.settings import RuntimeSettings, load_env_file


def test_runtime_settings_defaults() -> None:
    settings = RuntimeSettings().normalized()
    assert settings.storage_root == ".reqboard"
    assert settings.batch_max_items == 100
    assert not settings.review_sequential


def test_runtime_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REQBOARD_STORAGE_ROOT", " /var/lib/reqboard ")
    monkeypatch.setenv("REQBOARD_BATCH_MAX_ITEMS", "25")
    monkeypatch.setenv("REQBOARD_REVIEW_SEQUENTIAL", "yes")
    monkeypatch.setenv("REQBOARD_COMMENTS_KEY", "notes")

    settings = RuntimeSettings.from_env()

    assert settings.storage_root == "/var/lib/reqboard"
    assert settings.batch_max_items == 25
    assert settings.review_sequential
    assert settings.comments_key == "notes"
    assert settings.storage_path() == Path("/var/lib/reqboard")


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("REQBOARD_BATCH_MAX_ITEMS", "lots"),
        ("REQBOARD_BATCH_MAX_ITEMS", "0"),
        ("REQBOARD_BATCH_MAX_ITEMS", "10001"),
        ("REQBOARD_REVIEW_SEQUENTIAL", "maybe"),
        ("REQBOARD_STORAGE_ROOT", "   "),
        ("REQBOARD_VERSIONS_KEY", "requirements-store"),
    ],
)
def test_runtime_settings_invalid_env_raises(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        RuntimeSettings.from_env()


def test_storage_path_is_relative_to_base(tmp_path: Path) -> None:
    assert RuntimeSettings().storage_path(tmp_path) == tmp_path / ".reqboard"


def test_load_env_file_does_not_override_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Register both variables with monkeypatch so values loaded from the file are undone.
    for name in ("REQBOARD_BATCH_MAX_ITEMS", "REQBOARD_COMMENTS_KEY"):
        monkeypatch.setenv(name, "1")
        monkeypatch.delenv(name)
    monkeypatch.setenv("REQBOARD_COMMENTS_KEY", "notes")
    (tmp_path / ".env").write_text(
        "REQBOARD_BATCH_MAX_ITEMS=7\nREQBOARD_COMMENTS_KEY=from-file\n", encoding="utf-8"
    )

    assert load_env_file(tmp_path)
    assert os.environ["REQBOARD_BATCH_MAX_ITEMS"] == "7"
    assert RuntimeSettings.from_env().comments_key == "notes"


def test_load_env_file_missing(tmp_path: Path) -> None:
    assert not load_env_file(tmp_path)

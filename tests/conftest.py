"""
Shared pytest fixtures for contextkeeper tests.

Every test runs with the ck environment variables cleared and HOME
pointed at a temporary directory, so nothing touches a real store.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from contextkeeper.item_store import ItemStore
from contextkeeper.types import ContextItem


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Clear CK_* variables and use a throwaway home directory."""
    for name in ("CK_STORAGE_PATH", "CK_DEFAULT_PROJECT", "CK_VERBOSE", "EDITOR", "VISUAL"):
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home / "AppData"))
    return home


@pytest.fixture
def store_dir(tmp_path) -> Path:
    """A storage directory that does not exist yet."""
    return tmp_path / "project" / ".contextkeeper"


@pytest.fixture
def store(store_dir) -> ItemStore:
    """A loaded, empty store."""
    s = ItemStore(store_dir)
    s.load()
    return s


@pytest.fixture
def make_item():
    """Factory for items with readable, fixed IDs and timestamps."""
    counter = {"n": 0}

    def _make(
        id: str | None = None,
        content: str = "Test content",
        project: str = "",
        tags: list[str] | None = None,
        **kwargs,
    ) -> ContextItem:
        counter["n"] += 1
        return ContextItem(
            id=id or f"{counter['n']:08x}-0000-4000-8000-000000000000",
            content=content,
            project=project,
            tags=list(tags or []),
            created_at=kwargs.pop(
                "created_at", datetime(2026, 1, 15, 10, 30, counter["n"] % 60, tzinfo=timezone.utc)
            ),
            **kwargs,
        )

    return _make

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from learnpath.config import Settings, get_settings
from learnpath.store import EventStore
from learnpath.telemetry import clear_listeners


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in ("LEARNPATH_CONFIG", "LEARNPATH_DATA_DIR", "LEARNPATH_PROFILE_ID", "LEARNPATH_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    clear_listeners()
    yield
    clear_listeners()
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def store(settings: Settings) -> EventStore:
    return EventStore.from_settings(settings)


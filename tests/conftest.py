"""Test configuration and fixtures"""

import tempfile
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from sound_share.catalog.models import UserIdentity
from sound_share.core.exceptions import DatastoreError
from sound_share.core.logger import get_notice_board, shutdown_logging
from sound_share.datastore.memory import MemoryDatastore


class FakeClock:
    """Settable clock returning epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyDatastore(MemoryDatastore):
    """MemoryDatastore whose writes to chosen paths fail."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.failing_paths: set[str] = set()
        self.fail_reads = False

    def _check(self, path: str) -> None:
        if path.strip("/") in self.failing_paths:
            raise DatastoreError(f"Simulated failure at {path}", details={"path": path})

    def get(self, path: str):
        if self.fail_reads:
            raise DatastoreError("Simulated read failure", details={"path": path})
        return super().get(path)

    def set(self, path: str, value: Any) -> None:
        self._check(path)
        super().set(path, value)

    def remove(self, path: str) -> None:
        self._check(path)
        super().remove(path)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock():
    """Deterministic clock"""
    return FakeClock()


@pytest.fixture
def store():
    """Empty in-memory datastore (writes can be made to fail)"""
    datastore = FlakyDatastore()
    yield datastore
    datastore.close()


@pytest.fixture
def alice():
    return UserIdentity(id="alice", display_name="Alice")


@pytest.fixture
def bob():
    return UserIdentity(id="bob", display_name="Bob")


@pytest.fixture(autouse=True)
def clean_notices():
    """Each test starts with an empty notice board and no log handlers"""
    get_notice_board().dismiss_all()
    yield
    get_notice_board().dismiss_all()
    shutdown_logging()


@pytest.fixture
def sample_track_data():
    """Sample track data for testing"""
    return {
        'id': 'track_123',
        'name': 'Test Song',
        'artists': [{'id': 'artist_123', 'name': 'Test Artist'}],
        'album': {
            'id': 'album_123',
            'name': 'Test Album',
            'total_tracks': 12,
            'release_date': '2023-01-01',
            'artists': [{'id': 'artist_123', 'name': 'Test Artist'}],
            'images': [
                {'url': 'https://i.scdn.co/small', 'width': 64, 'height': 64},
                {'url': 'https://i.scdn.co/large', 'width': 640, 'height': 640},
            ]
        },
        'duration_ms': 210000,  # 3:30
        'external_urls': {'spotify': 'https://open.spotify.com/track/track_123'}
    }


@pytest.fixture
def sample_album_data():
    """Sample album data for testing"""
    return {
        'id': 'album_123',
        'name': 'Test Album',
        'artists': [{'id': 'artist_123', 'name': 'Test Artist'}],
        'release_date': '2019-06',
        'total_tracks': 2,
        'images': [{'url': 'https://i.scdn.co/cover', 'width': 300, 'height': 300}]
    }

"""Shared test fixtures and configuration for backend tests."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from cosmic_uploads.config import AppConfig, StorageSettings, UploadSettings
from cosmic_uploads.main import create_app
from cosmic_uploads.storage.service import FileStore


class FakeClock:
    """Controllable time source handed to FileStore."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def storage_settings(upload_dir):
    return StorageSettings(upload_dir=str(upload_dir))


@pytest.fixture
def store(storage_settings, clock):
    """A FileStore without background reapers; sweeps are called directly."""
    return FileStore(storage_settings, clock=clock)


@pytest.fixture
def app_config(storage_settings):
    return AppConfig(
        storage=storage_settings,
        upload=UploadSettings(max_file_size_bytes=1024),
    )


@pytest.fixture
def api_client(app_config, clock):
    """Provide a TestClient with the lifespan (and so the FileStore) running."""
    app = create_app(app_config, clock=clock)
    with TestClient(app) as client:
        yield client

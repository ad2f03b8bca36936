"""Fixtures for the web API tests."""

import pytest
from fastapi.testclient import TestClient

from escuela.config.app_config import AppConfig, StorageConfig
from escuela.web.api import create_app


@pytest.fixture
def app(tmp_path, clock):
    config = AppConfig(storage=StorageConfig(data_dir=str(tmp_path / "data")))
    return create_app(config, clock=clock)


@pytest.fixture
def services(app):
    """Services of the app under test; shared fixtures build on these."""
    return app.state.services


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)

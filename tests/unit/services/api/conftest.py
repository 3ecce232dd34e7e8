"""Shared fixtures for services.api test package."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from derepute.core.registry import RegistryStore
from derepute.services.api import Api, ApiConfig


@pytest.fixture
def api_config() -> ApiConfig:
    """Minimal API config for testing."""
    return ApiConfig(
        interval=60.0,
        host="127.0.0.1",
        port=9999,
        max_page_size=3,
        default_page_size=2,
        search_page_size=2,
    )


@pytest.fixture
def api_service(populated_store: RegistryStore, api_config: ApiConfig) -> Api:
    return Api(populated_store, api_config)


@pytest.fixture
def test_client(api_service: Api) -> TestClient:
    return TestClient(api_service._build_app())

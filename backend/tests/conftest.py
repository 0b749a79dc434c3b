"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from huddle.config import AppSettings
from huddle.main import create_app


@pytest.fixture
def api_client():
    """Provide a TestClient for a fresh app with its own, empty chat room."""
    return TestClient(create_app(AppSettings()))

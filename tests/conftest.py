from __future__ import annotations

from typing import Optional

import pytest
from fastapi.testclient import TestClient

from chat.auth import hash_password
from chat.store import ChatStore
from db.database import make_session_factory
from relay.main import app, get_generation_client
from relay.settings import RelaySettings, get_settings


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(api_key="test-key", default_model="gemini-1.5-pro", temperature=0.8, max_tokens=1024)


@pytest.fixture
def relay_app(settings):
    """Return a factory binding the relay app to given settings and generation double."""

    def bind(generation, relay_settings: Optional[RelaySettings] = None):
        app.dependency_overrides[get_settings] = lambda: relay_settings or settings
        app.dependency_overrides[get_generation_client] = lambda: generation
        return app

    yield bind
    app.dependency_overrides.clear()


@pytest.fixture
def relay_client(relay_app):
    def make(generation, relay_settings: Optional[RelaySettings] = None) -> TestClient:
        return TestClient(relay_app(generation, relay_settings))

    return make


@pytest.fixture
def store(tmp_path) -> ChatStore:
    return ChatStore(make_session_factory(f"sqlite:///{tmp_path / 'chat.db'}"))


@pytest.fixture
def user(store):
    return store.create_user("alice@example.com", hash_password("secret1"))

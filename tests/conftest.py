"""Shared fixtures: an in-memory store, an app wired to it and an authenticated client."""

import pytest

from objregistry.config import Config
from objregistry.routes import create_app
from objregistry.storage.memory import Storage as MemoryStorage
from tests.helpers import basic_auth

SECRET = "s3cret"


@pytest.fixture
def store():
    return MemoryStorage()


@pytest.fixture
def cfg():
    cfg = Config()
    cfg.REGISTRY_SECRET = SECRET
    cfg.STORAGE_DRIVER = "memory"
    return cfg


@pytest.fixture
def app(cfg, store):
    return create_app(cfg, store)


@pytest.fixture
def anon_client(app):
    return app.test_client()


@pytest.fixture
def client(app):
    client = app.test_client()
    client.environ_base["HTTP_AUTHORIZATION"] = basic_auth(SECRET)
    return client

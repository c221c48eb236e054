"""Shared fixtures: an isolated storage root, user database and app per test."""

import os
import tempfile

# Server loggers open their files at import time; keep them out of the repo.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="filedash-logs-"))
os.environ.setdefault("LOG_LEVEL_CONSOLE", "WARNING")
os.environ.setdefault("LOG_COLOR", "0")

import pytest
from fastapi.testclient import TestClient

from core.accounts.user_manager import UserStore
from core.storage.config import StorageConfig
from core.storage.paths import PathResolver
from core.storage.service import FileStore
from FileServer.config import Settings
from FileServer.main import create_app

ADMIN_USER = 'admin'
ADMIN_PASS = 'admin-pass-123'


@pytest.fixture
def root_dir(tmp_path):
    """Empty storage root.

    Returns:
        Path of the root directory.
    """
    root = tmp_path / 'root'
    root.mkdir()
    return root


@pytest.fixture
def config(root_dir):
    """Storage config rooted at root_dir."""
    return StorageConfig(root=str(root_dir))


@pytest.fixture
def resolver(config):
    return PathResolver(config)


@pytest.fixture
def store(config):
    """FileStore over the per-test root."""
    return FileStore(config)


@pytest.fixture
def users(tmp_path):
    """User store backed by a throwaway SQLite file.

    Yields:
        UserStore with cheap bcrypt rounds.
    """
    us = UserStore(str(tmp_path / 'db' / 'users.db'), hash_rounds=4)
    yield us
    us.close()


@pytest.fixture
def settings(tmp_path, root_dir):
    return Settings.coerce(
        storage_root=str(root_dir),
        db_path=str(tmp_path / 'db' / 'api-users.db'),
        jwt_secret='test-secret-key-with-enough-length-for-hs256',
        admin_username=ADMIN_USER,
        admin_password=ADMIN_PASS,
        bcrypt_rounds=4,
    )


@pytest.fixture
def client(settings):
    """TestClient with lifespan run (root created, admin seeded).

    Yields:
        fastapi.testclient.TestClient
    """
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    """Bearer header for the seeded admin."""
    r = client.post('/api/auth/login', json={'username': ADMIN_USER, 'password': ADMIN_PASS})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['token']}"}

import importlib
import json

import pytest
from fastapi.testclient import TestClient

from memostore.core import config
from memostore.db.migrations import MigrationRunner
from memostore.db.sqlite import Database


@pytest.fixture()
def env(tmp_path, monkeypatch):
    api_keys = {"key_admin": [1, 2], "key_1": [1], "key_2": [2]}
    monkeypatch.setenv("API_KEYS_JSON", json.dumps(api_keys))
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("LOG_LEVEL", "CRITICAL")
    monkeypatch.setenv("APP_DISABLE_AUTOCREATE", "1")
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    config.get_settings.cache_clear()
    yield monkeypatch
    config.get_settings.cache_clear()


@pytest.fixture()
def settings(env):
    return config.get_settings()


@pytest.fixture()
def client(env) -> TestClient:
    from memostore import main as main_module

    importlib.reload(main_module)
    app = main_module.create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def db(settings):
    MigrationRunner(settings.db_path, settings).run()
    database = Database(settings.db_path, settings.db_max_connections)
    yield database
    database.close()

import logging

from memostore.core import config
from memostore.core.security import hash_password, verify_password
from memostore.db.migrations import LOGGER_NAME, MigrationRunner, schema_session
from memostore.db.sqlite import transaction
from memostore.db.steps import STEPS


def _events(caplog, name):
    return [
        record.msg
        for record in caplog.records
        if isinstance(record.msg, dict) and record.msg.get("event") == name
    ]


def _admin(db_path):
    with schema_session(db_path) as conn:
        return conn.execute(
            "SELECT * FROM users WHERE is_admin = 1 ORDER BY id LIMIT 1"
        ).fetchone()


def _reload_settings(env, **values):
    for key, value in values.items():
        env.setenv(key, value)
    config.get_settings.cache_clear()
    return config.get_settings()


def test_fresh_install_generates_admin_password(settings, caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER_NAME)
    MigrationRunner(settings.db_path, settings).run()

    events = _events(caplog, "admin_bootstrapped")
    assert len(events) == 1
    password = events[0]["password"]
    assert len(password) == 16

    admin = _admin(settings.db_path)
    assert admin["username"] == "admin"
    assert admin["must_change_password"] == 1
    assert verify_password(password, admin["password"])


def test_configured_password_creates_admin(env):
    settings = _reload_settings(env, ADMIN_PASSWORD="  correct-horse  ")
    MigrationRunner(settings.db_path, settings).run()

    admin = _admin(settings.db_path)
    assert verify_password("correct-horse", admin["password"])
    assert admin["must_change_password"] == 1


def test_configured_password_overrides_existing_admin(env, settings):
    MigrationRunner(settings.db_path, settings, steps=STEPS[:4]).run()
    with schema_session(settings.db_path) as conn, transaction(conn):
        conn.execute(
            "INSERT INTO users (username, password, is_admin) VALUES ('root', ?, 1)",
            (hash_password("old-password"),),
        )

    settings = _reload_settings(env, ADMIN_PASSWORD="new-password")
    MigrationRunner(settings.db_path, settings).run()

    admin = _admin(settings.db_path)
    assert admin["username"] == "root"
    assert verify_password("new-password", admin["password"])
    assert not verify_password("old-password", admin["password"])
    with schema_session(settings.db_path) as conn:
        assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 1


def test_insecure_default_password_is_flagged(settings, caplog):
    MigrationRunner(settings.db_path, settings, steps=STEPS[:4]).run()
    stored = hash_password("admin123")
    with schema_session(settings.db_path) as conn, transaction(conn):
        conn.execute(
            "INSERT INTO users (username, password, is_admin) VALUES ('admin', ?, 1)",
            (stored,),
        )

    caplog.set_level(logging.WARNING, logger=LOGGER_NAME)
    MigrationRunner(settings.db_path, settings).run()

    admin = _admin(settings.db_path)
    assert admin["password"] == stored
    assert admin["must_change_password"] == 1
    assert len(_events(caplog, "admin_insecure_default_password")) == 1
    assert _events(caplog, "admin_bootstrapped") == []


def test_password_override_applies_only_once(env, settings):
    MigrationRunner(settings.db_path, settings).run()
    original = _admin(settings.db_path)["password"]

    settings = _reload_settings(env, ADMIN_PASSWORD="late-password")
    MigrationRunner(settings.db_path, settings).run()

    admin = _admin(settings.db_path)
    assert admin["password"] == original
    assert not verify_password("late-password", admin["password"])

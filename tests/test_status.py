import dataclasses
import sqlite3

import pytest
from fastapi.testclient import TestClient

from skyreg import db
from skyreg.heartbeat import HeartbeatManager
from skyreg.models import ServiceDescriptor
from skyreg.registration import RegistrationService
from skyreg.status import create_app

from fakes import FakeContainers, FakeRegistry, redis_container

KEY = "abcdef0123"
DESCRIPTOR = ServiceDescriptor("redis", "redis1", "192.168.1.10", "production", 60, 6379)


@pytest.fixture
def heartbeats():
    registry = FakeRegistry()
    registry.services[KEY] = DESCRIPTOR
    mgr = HeartbeatManager(FakeContainers(redis_container()), RegistrationService(registry))
    yield mgr
    mgr.stop_all(timeout=2)


@pytest.fixture
def client(heartbeats):
    return TestClient(create_app(heartbeats))


def test_health_counts_registrations(client, heartbeats):
    assert client.get("/health").json() == {"status": "healthy", "registrations": 0}
    heartbeats.start_heartbeat(KEY, DESCRIPTOR, 60)
    assert client.get("/health").json()["registrations"] == 1


def test_registrations_lists_live_loops(client, heartbeats):
    heartbeats.start_heartbeat(KEY, DESCRIPTOR, 60)
    r = client.get("/registrations")
    assert r.status_code == 200
    (view,) = r.json()
    assert view["key"] == KEY
    assert view["name"] == "redis"
    assert view["port"] == 6379
    assert view["ttl_seconds"] == 60
    assert view["beat_interval_s"] == 45
    assert view["consecutive_errors"] == 0


def test_events_reads_the_journal(client):
    db.log_event("INFO", "Adding abcdef0123", KEY, "redis")
    db.log_event("WARN", "something else", "0123456789")

    all_events = client.get("/events", params={"limit": 10}).json()
    assert [e["message"] for e in all_events][:2] == ["something else", "Adding abcdef0123"]

    only_key = client.get("/events", params={"key": KEY}).json()
    assert [e["service_key"] for e in only_key] == [KEY]

    assert client.get("/events", params={"limit": 0}).status_code == 422


def test_debug_events_are_not_persisted():
    db.log_event("DEBUG", "noisy")
    db.log_event("info", "kept")
    messages = [e["message"] for e in db.latest_events()]
    assert "kept" in messages
    assert "noisy" not in messages
    assert db.latest_events()[0]["level"] == "INFO"


def test_disabled_journal(monkeypatch):
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=""))
    db.init_db()
    db.log_event("ERROR", "only on stderr")
    assert db.latest_events() == []


def test_journal_path_may_be_a_directory(tmp_path, monkeypatch):
    target = tmp_path / "mounted"
    target.mkdir()
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=str(target)))
    db.init_db()
    db.log_event("INFO", "inside the directory")
    assert (target / "skyreg.db").exists()
    assert db.latest_events()[0]["message"] == "inside the directory"


def test_journal_write_failure_is_reported_not_raised(monkeypatch, capsys):
    def locked():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "connect", locked)
    db.log_event("ERROR", "renewal failed", KEY)
    err = capsys.readouterr().err
    assert "renewal failed" in err
    assert "journal write failed: database is locked" in err

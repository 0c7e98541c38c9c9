import threading
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from models import db
from models.session import Session
from security.session_store import ExpirationSweeper, SqlSessionStore


def _past(seconds=60):
    return (datetime.utcnow() - timedelta(seconds=seconds)).isoformat()


def _future(seconds=3600):
    return (datetime.utcnow() + timedelta(seconds=seconds)).isoformat()


def test_set_then_get_round_trips_payload(app_ctx):
    store = SqlSessionStore()
    data = {"user": {"id": "42", "provider": "twitch", "allowed": True}, "returnTo": "/dashboard/"}

    store.set("sid-1", data)

    assert store.get("sid-1") == data


def test_get_missing_returns_none(app_ctx):
    assert SqlSessionStore().get("nope") is None


def test_set_overwrites_existing_row(app_ctx):
    store = SqlSessionStore()
    store.set("sid-1", {"n": 1})
    store.set("sid-1", {"n": 2})

    assert store.get("sid-1") == {"n": 2}
    assert Session.query.count() == 1


def test_set_recovers_when_row_appears_after_lookup(app_ctx, monkeypatch):
    store = SqlSessionStore()
    store.set("sid-1", {"n": 1})
    db.session.expunge_all()

    # a concurrent request inserted the row after our lookup missed it
    lookups = []
    real_find = store._find

    def racing_find(session_id):
        lookups.append(session_id)
        return None if len(lookups) == 1 else real_find(session_id)

    monkeypatch.setattr(store, "_find", racing_find)

    store.set("sid-1", {"n": 2})

    assert lookups[0] == "sid-1"
    assert Session.query.count() == 1
    assert store.get("sid-1") == {"n": 2}


def test_destroy_removes_row_and_is_idempotent(app_ctx):
    store = SqlSessionStore()
    store.set("sid-1", {"n": 1})

    store.destroy("sid-1")
    store.destroy("sid-1")

    assert store.get("sid-1") is None


def test_expiry_defaults_to_configured_ttl(app_ctx):
    store = SqlSessionStore(expiration=120)
    before = datetime.utcnow()

    store.set("sid-1", {"n": 1})

    row = db.session.get(Session, "sid-1")
    assert before + timedelta(seconds=119) <= row.expires_at <= datetime.utcnow() + timedelta(seconds=121)


def test_expiry_follows_cookie_expires(app_ctx):
    store = SqlSessionStore()
    expires = datetime(2031, 5, 1, 12, 0, 0)

    store.set("sid-1", {"n": 1, "cookie": {"expires": expires.isoformat()}})

    assert db.session.get(Session, "sid-1").expires_at == expires


def test_expiry_accepts_utc_z_suffix(app_ctx):
    store = SqlSessionStore()

    store.set("sid-1", {"n": 1, "cookie": {"expires": "2031-05-01T12:00:00.000Z"}})

    assert db.session.get(Session, "sid-1").expires_at == datetime(2031, 5, 1, 12, 0, 0)


def test_unparseable_cookie_expires_falls_back_to_ttl(app_ctx):
    store = SqlSessionStore(expiration=120)
    before = datetime.utcnow()

    store.set("sid-1", {"n": 1, "cookie": {"expires": "Thu, 01 May 2031 12:00:00 GMT"}})

    row = db.session.get(Session, "sid-1")
    assert before + timedelta(seconds=119) <= row.expires_at <= datetime.utcnow() + timedelta(seconds=121)
    assert store.get("sid-1")["n"] == 1

    # touch goes through the same parsing
    store.touch("sid-1", {"cookie": {"expires": "not-a-date"}})
    assert store.get("sid-1")["n"] == 1


def test_touch_extends_expiry_without_touching_payload(app_ctx):
    store = SqlSessionStore()
    store.set("sid-1", {"n": 1, "cookie": {"expires": _future(60)}})
    original = db.session.get(Session, "sid-1")
    old_expiry, old_blob = original.expires_at, original.data

    later = datetime.utcnow() + timedelta(days=3)
    store.touch("sid-1", {"n": 999, "cookie": {"expires": later.isoformat()}})

    row = db.session.get(Session, "sid-1")
    assert row.expires_at > old_expiry
    assert row.data == old_blob
    assert store.get("sid-1")["n"] == 1


def test_expired_row_is_not_resolvable_before_sweep(app_ctx):
    store = SqlSessionStore()
    store.set("old", {"n": 1, "cookie": {"expires": _past()}})

    assert store.get("old") is None


def test_clear_expired_sessions_only_removes_expired(app_ctx):
    store = SqlSessionStore()
    store.set("old", {"n": 1, "cookie": {"expires": _past()}})
    store.set("fresh", {"n": 2, "cookie": {"expires": _future()}})

    removed = store.clear_expired_sessions()

    assert removed == 1
    assert db.session.get(Session, "old") is None
    assert store.get("fresh")["n"] == 2


def test_sweeper_sweep_removes_expired(app, app_ctx):
    store = SqlSessionStore()
    store.set("old", {"cookie": {"expires": _past()}})
    sweeper = ExpirationSweeper(app, store, interval=60)

    assert sweeper.sweep() == 1
    assert Session.query.count() == 0


def test_sweeper_swallows_storage_errors(app, monkeypatch):
    store = SqlSessionStore()

    def broken():
        raise OperationalError("DELETE", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "clear_expired_sessions", broken)
    sweeper = ExpirationSweeper(app, store, interval=60)

    assert sweeper.sweep() == 0


def test_sweeper_runs_immediately_and_keeps_running_after_failure(app):
    store = SqlSessionStore()
    calls = []
    done = threading.Event()

    def flaky():
        calls.append(datetime.utcnow())
        if len(calls) == 1:
            raise OperationalError("DELETE", {}, Exception("transient"))
        if len(calls) >= 3:
            done.set()
        return 0

    store.clear_expired_sessions = flaky
    sweeper = ExpirationSweeper(app, store, interval=0.01)

    sweeper.start()
    try:
        assert done.wait(5)
    finally:
        sweeper.stop(timeout=5)

    assert len(calls) >= 3

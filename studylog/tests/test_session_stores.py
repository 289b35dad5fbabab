"""
Server-side stores: OAuth state (single use) and sessions (memory and DB).

The DB-backed store runs against the fake psycopg from `tests/utils`.
"""
import pytest

from studylog.identity_access import stores as stores_mod
from studylog.identity_access import stores_db
from studylog.identity_access.stores import SessionStore, StateStore
from studylog.tests.utils.fake_psycopg import install_fake_psycopg


def test_state_is_single_use():
    store = StateStore()
    rec = store.create(code_verifier="v", redirect="/teacher")
    assert store.pop_valid(rec.state).redirect == "/teacher"
    assert store.pop_valid(rec.state) is None


def test_expired_state_is_rejected():
    store = StateStore()
    rec = store.create(code_verifier="v", ttl_seconds=-1)
    assert store.pop_valid(rec.state) is None


def _create(store, **kw):
    params = dict(
        user_id="u1",
        email="u1@school.example",
        access_token="a1",
        refresh_token="r1",
        token_expires_at=1_000,
    )
    params.update(kw)
    return store.create(**params)


def test_memory_session_roundtrip_and_token_update():
    store = SessionStore()
    rec = _create(store)
    assert rec.csrf_token
    assert store.get(rec.session_id).user_id == "u1"

    updated = store.update_tokens(rec.session_id, access_token="a2", refresh_token="r2", token_expires_at=2_000)
    assert updated.access_token == "a2"
    assert updated.csrf_token == rec.csrf_token
    session = store.get(rec.session_id).to_session()
    assert (session.access_token, session.refresh_token, session.expires_at) == ("a2", "r2", 2_000)

    store.delete(rec.session_id)
    assert store.get(rec.session_id) is None
    assert store.update_tokens(rec.session_id, access_token="x", refresh_token="y", token_expires_at=1) is None


def test_memory_session_expires(monkeypatch):
    store = SessionStore()
    rec = _create(store, ttl_seconds=10)
    monkeypatch.setattr(stores_mod, "_now", lambda: rec.expires_at + 1)
    assert store.get(rec.session_id) is None


def test_db_store_requires_dsn(monkeypatch):
    install_fake_psycopg(monkeypatch, stores_db)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        stores_db.DBSessionStore()


def test_db_store_rejects_bad_table_names(monkeypatch):
    install_fake_psycopg(monkeypatch, stores_db)
    with pytest.raises(ValueError):
        stores_db.DBSessionStore(dsn="postgresql://fake", table="sessions; drop table x")


def test_db_store_roundtrip(monkeypatch):
    table = install_fake_psycopg(monkeypatch, stores_db, now_func=lambda: 1_000_000)
    store = stores_db.DBSessionStore(dsn="postgresql://fake")

    rec = _create(store, ttl_seconds=60)
    assert rec.session_id in table
    loaded = store.get(rec.session_id)
    assert loaded.email == "u1@school.example"
    assert loaded.csrf_token == rec.csrf_token

    updated = store.update_tokens(rec.session_id, access_token="a2", refresh_token="r2", token_expires_at=5)
    assert (updated.access_token, updated.refresh_token, updated.token_expires_at) == ("a2", "r2", 5)

    store.delete(rec.session_id)
    assert store.get(rec.session_id) is None


def test_db_store_hides_expired_rows(monkeypatch):
    clock = {"now": 1_000_000}
    install_fake_psycopg(monkeypatch, stores_db, now_func=lambda: clock["now"])
    store = stores_db.DBSessionStore(dsn="postgresql://fake")
    rec = _create(store, ttl_seconds=60)

    clock["now"] += 120
    assert store.get(rec.session_id) is None

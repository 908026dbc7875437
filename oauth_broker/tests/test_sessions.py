"""Tests for the session store: token minting, upstream binding, indexes and expiry."""
import re
import threading

import pytest

from oauth_broker.crypto import TokenCipher
from oauth_broker.sessions import SessionStore


@pytest.fixture
def sessions(clock):
    return SessionStore(7 * 24 * 3600, clock=clock)


def test_create_mints_independent_tokens(sessions, clock):
    s = sessions.create("client-1")
    values = {s.session_id, s.broker_access_token, s.broker_refresh_token}
    assert len(values) == 3
    for v in values:
        assert re.match(r"^[0-9a-f]{64}$", v)
    assert s.client_id == "client-1"
    assert s.expires_at == clock() + 7 * 24 * 3600
    assert not s.has_upstream_tokens


def test_bind_upstream_tokens(sessions, clock):
    s = sessions.create("client-1")
    bound = sessions.bind_upstream_tokens(s.session_id, "up-at", "up-rt", 1800, "scope.a")
    assert bound.upstream_access_token == "up-at"
    assert bound.upstream_refresh_token == "up-rt"
    assert bound.upstream_expires_at == clock() + 1800
    assert bound.upstream_scope == "scope.a"
    assert sessions.get_by_session_id(s.session_id) == bound


def test_bind_defaults_expires_in(sessions, clock):
    s = sessions.create("client-1")
    bound = sessions.bind_upstream_tokens(s.session_id, "up-at")
    assert bound.upstream_expires_at == clock() + 3600
    assert bound.upstream_refresh_token is None


def test_bind_is_idempotent_overwrite(sessions):
    s = sessions.create("client-1")
    sessions.bind_upstream_tokens(s.session_id, "first", "rt-1", 100)
    sessions.bind_upstream_tokens(s.session_id, "second", "rt-2", 200)
    got = sessions.get_by_broker_access_token(s.broker_access_token)
    assert got.upstream_access_token == "second"
    assert got.upstream_refresh_token == "rt-2"


def test_bind_unknown_session(sessions):
    assert sessions.bind_upstream_tokens("missing", "at") is None


def test_upstream_tokens_are_encrypted_at_rest(clock):
    store = SessionStore(3600, cipher=TokenCipher("test-key"), clock=clock)
    s = store.create("client-1")
    store.bind_upstream_tokens(s.session_id, "plain-upstream-token", "plain-refresh")
    raw = store._sessions.get(s.session_id)
    assert raw.upstream_access_token != "plain-upstream-token"
    assert "plain" not in raw.upstream_refresh_token
    assert store.get_by_session_id(s.session_id).upstream_access_token == "plain-upstream-token"


def test_lookup_by_access_token_and_client(sessions):
    s1 = sessions.create("client-1")
    s2 = sessions.create("client-1")
    other = sessions.create("client-2")
    assert sessions.get_by_broker_access_token(s1.broker_access_token).session_id == s1.session_id
    assert sessions.get_by_client_id("client-1").session_id == s2.session_id
    assert sessions.get_by_client_id("client-2").session_id == other.session_id
    assert sessions.get_by_broker_access_token("unknown") is None
    assert sessions.get_by_broker_access_token(None) is None
    assert sessions.get_by_client_id(None) is None
    assert sessions.get_by_session_id(None) is None


def test_expired_session_is_absent(sessions, clock):
    s = sessions.create("client-1")
    clock.advance(7 * 24 * 3600 + 1)
    assert sessions.get_by_session_id(s.session_id) is None
    assert sessions.get_by_broker_access_token(s.broker_access_token) is None
    assert sessions.get_by_client_id("client-1") is None


def test_session_ttl_is_independent_of_upstream_ttl(sessions, clock):
    s = sessions.create("client-1")
    sessions.bind_upstream_tokens(s.session_id, "at", expires_in=60)
    clock.advance(120)
    got = sessions.get_by_session_id(s.session_id)
    assert got is not None
    assert got.upstream_expired(clock())
    assert got.upstream_expires_in(clock()) == 0


def test_remove_drops_indexes(sessions):
    s = sessions.create("client-1")
    assert sessions.remove(s.session_id) is True
    assert sessions.get_by_broker_access_token(s.broker_access_token) is None
    assert sessions.get_by_client_id("client-1") is None
    assert sessions.remove(s.session_id) is False


def test_client_lookup_falls_back_to_older_session(sessions):
    s1 = sessions.create("client-1")
    s2 = sessions.create("client-1")
    assert sessions.remove(s2.session_id) is True
    assert sessions.get_by_client_id("client-1").session_id == s1.session_id
    assert sessions.remove(s1.session_id) is True
    assert sessions.get_by_client_id("client-1") is None


def test_sweep(sessions, clock):
    sessions.create("client-1")
    sessions.create("client-2")
    clock.advance(7 * 24 * 3600 + 1)
    assert sessions.sweep() == 2
    assert len(sessions) == 0


def test_readers_never_see_partial_binding(sessions):
    s = sessions.create("client-1")
    seen = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            got = sessions.get_by_broker_access_token(s.broker_access_token)
            seen.append((got.upstream_access_token, got.upstream_refresh_token))

    t = threading.Thread(target=reader)
    t.start()
    for i in range(200):
        sessions.bind_upstream_tokens(s.session_id, f"at-{i}", f"rt-{i}")
    stop.set()
    t.join()
    for access, refresh in seen:
        if access is None:
            assert refresh is None
        else:
            assert access.split("-")[1] == refresh.split("-")[1]


def test_sweep_drops_sessions_never_bound(clock):
    store = SessionStore(7 * 24 * 3600, pending_ttl_seconds=600, clock=clock)
    pending = store.create("client-1")
    bound = store.create("client-1")
    store.bind_upstream_tokens(bound.session_id, "at")
    clock.advance(600)
    assert store.sweep() == 0
    clock.advance(1)
    assert store.sweep() == 1
    assert store.get_by_session_id(pending.session_id) is None
    assert store.get_by_broker_access_token(pending.broker_access_token) is None
    assert store.get_by_session_id(bound.session_id).upstream_access_token == "at"
    assert store.get_by_client_id("client-1").session_id == bound.session_id
    assert len(store) == 1

"""Tests for single-use broker authorization codes."""
import threading

import pytest

from oauth_broker.codes import AuthorizationCodeStore
from oauth_broker.errors import InvalidGrant


@pytest.fixture
def codes(clock):
    return AuthorizationCodeStore(600, clock=clock)


def test_issue_and_redeem(codes, clock):
    code = codes.issue("client-1", "session-1", "https://rp.example/cb", "challenge", "S256")
    record = codes.redeem(code, "client-1")
    assert record.client_id == "client-1"
    assert record.session_id == "session-1"
    assert record.redirect_uri == "https://rp.example/cb"
    assert record.code_challenge == "challenge"
    assert record.created_at == clock()


def test_codes_are_unique(codes):
    assert len({codes.issue("c", "s", "https://rp.example/cb") for _ in range(50)}) == 50


def test_replay_fails(codes):
    code = codes.issue("client-1", "session-1", "https://rp.example/cb")
    codes.redeem(code, "client-1")
    with pytest.raises(InvalidGrant):
        codes.redeem(code, "client-1")


def test_unknown_and_empty_code(codes):
    with pytest.raises(InvalidGrant):
        codes.redeem("nope", "client-1")
    with pytest.raises(InvalidGrant):
        codes.redeem(None, "client-1")


def test_expired_code_fails_without_sweep(codes, clock):
    code = codes.issue("client-1", "session-1", "https://rp.example/cb")
    clock.advance(601)
    with pytest.raises(InvalidGrant):
        codes.redeem(code, "client-1")


def test_client_mismatch_is_generic_and_burns_code(codes, caplog):
    code = codes.issue("client-1", "session-1", "https://rp.example/cb")
    with pytest.raises(InvalidGrant) as exc:
        codes.redeem(code, "client-2")
    assert exc.value.description == InvalidGrant.default_description
    assert "presented by client client-2" in caplog.text
    with pytest.raises(InvalidGrant):
        codes.redeem(code, "client-1")


def test_peek_does_not_consume(codes, clock):
    code = codes.issue("client-1", "session-1", "https://rp.example/cb")
    assert codes.peek(code).client_id == "client-1"
    assert codes.redeem(code, "client-1").session_id == "session-1"
    assert codes.peek(code) is None
    assert codes.peek(None) is None


def test_sweep(codes, clock):
    codes.issue("client-1", "s1", "https://rp.example/cb")
    clock.advance(300)
    codes.issue("client-1", "s2", "https://rp.example/cb")
    clock.advance(301)
    assert codes.sweep() == 1
    assert len(codes) == 1


def test_concurrent_redeem_has_exactly_one_winner(codes):
    code = codes.issue("client-1", "session-1", "https://rp.example/cb")
    wins = []
    failures = []
    barrier = threading.Barrier(20)

    def worker():
        barrier.wait()
        try:
            wins.append(codes.redeem(code, "client-1"))
        except InvalidGrant:
            failures.append(1)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(wins) == 1
    assert len(failures) == 19

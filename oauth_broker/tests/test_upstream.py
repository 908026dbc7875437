"""Tests for the upstream IdP client (httpx.post is patched; no network)."""
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from oauth_broker.errors import UpstreamError, UpstreamUnavailable
from oauth_broker.upstream import UpstreamIdP, UpstreamRejected


class MockResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


@pytest.fixture
def idp():
    return UpstreamIdP(
        client_id="broker-client",
        client_secret="broker-secret",
        authorize_url="https://idp.example/o/oauth2/auth",
        token_url="https://idp.example/token",
        scopes=["scope.read", "scope.write"],
        authorize_params={"access_type": "offline", "prompt": "consent"},
        timeout=3.0,
    )


def test_authorization_url(idp):
    url = idp.authorization_url(redirect_uri="https://broker.example/callback", state="st-1")
    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://idp.example/o/oauth2/auth"
    q = {k: v[0] for k, v in parse_qs(parts.query).items()}
    assert q == {
        "client_id": "broker-client",
        "redirect_uri": "https://broker.example/callback",
        "response_type": "code",
        "scope": "scope.read scope.write",
        "state": "st-1",
        "access_type": "offline",
        "prompt": "consent",
    }


def test_exchange_code(idp):
    payload = {
        "access_token": "ya29.x",
        "refresh_token": "1//r",
        "expires_in": 3599,
        "scope": "scope.read",
        "token_type": "Bearer",
    }
    with patch("oauth_broker.upstream.httpx.post", return_value=MockResponse(200, payload)) as post:
        tokens = idp.exchange_code("up-code", "https://broker.example/callback")
    assert tokens.access_token == "ya29.x"
    assert tokens.refresh_token == "1//r"
    assert tokens.expires_in == 3599
    assert tokens.scope == "scope.read"
    args, kwargs = post.call_args
    assert args == ("https://idp.example/token",)
    assert kwargs["data"] == {
        "grant_type": "authorization_code",
        "code": "up-code",
        "redirect_uri": "https://broker.example/callback",
        "client_id": "broker-client",
        "client_secret": "broker-secret",
    }
    assert kwargs["timeout"] == 3.0


def test_refresh(idp):
    with patch(
        "oauth_broker.upstream.httpx.post",
        return_value=MockResponse(200, {"access_token": "new", "expires_in": "1200"}),
    ) as post:
        tokens = idp.refresh("1//r")
    assert tokens.access_token == "new"
    assert tokens.refresh_token is None
    assert tokens.expires_in == 1200
    assert post.call_args.kwargs["data"]["grant_type"] == "refresh_token"
    assert post.call_args.kwargs["data"]["refresh_token"] == "1//r"


def test_rejected_exchange(idp):
    with patch("oauth_broker.upstream.httpx.post", return_value=MockResponse(400, {"error": "invalid_grant"})):
        with pytest.raises(UpstreamRejected) as exc:
            idp.exchange_code("bad", "https://broker.example/callback")
    assert exc.value.status_code == 500
    assert exc.value.error == "upstream_error"
    assert "invalid_grant" in exc.value.description


def test_server_error_is_unavailable(idp):
    with patch("oauth_broker.upstream.httpx.post", return_value=MockResponse(502)):
        with pytest.raises(UpstreamUnavailable) as exc:
            idp.exchange_code("c", "https://broker.example/callback")
    assert exc.value.status_code == 503
    assert exc.value.headers == {"Retry-After": "5"}


def test_timeout_is_unavailable(idp):
    with patch("oauth_broker.upstream.httpx.post", side_effect=httpx.ReadTimeout("timed out")):
        with pytest.raises(UpstreamUnavailable):
            idp.exchange_code("c", "https://broker.example/callback")


def test_transport_error_is_unavailable(idp):
    with patch("oauth_broker.upstream.httpx.post", side_effect=httpx.ConnectError("refused")):
        with pytest.raises(UpstreamUnavailable):
            idp.refresh("r")


def test_response_without_access_token(idp):
    with patch("oauth_broker.upstream.httpx.post", return_value=MockResponse(200, {"token_type": "Bearer"})):
        with pytest.raises(UpstreamError) as exc:
            idp.exchange_code("c", "https://broker.example/callback")
    assert not isinstance(exc.value, UpstreamUnavailable)
    assert exc.value.status_code == 500


def test_non_json_success_response(idp):
    with patch("oauth_broker.upstream.httpx.post", return_value=MockResponse(200, None)):
        with pytest.raises(UpstreamError):
            idp.exchange_code("c", "https://broker.example/callback")


@pytest.mark.parametrize(
    "payload",
    [
        {"access_token": 123},
        {"access_token": ["a", "b"]},
        {"access_token": "at", "refresh_token": {"nested": True}},
        {"access_token": "at", "scope": ["openid"]},
    ],
)
def test_non_string_token_fields_are_upstream_errors(idp, payload):
    with patch("oauth_broker.upstream.httpx.post", return_value=MockResponse(200, payload)):
        with pytest.raises(UpstreamError) as exc:
            idp.exchange_code("c", "https://broker.example/callback")
    assert exc.value.status_code == 500

"""
Pytest configuration for oauth_broker. In-memory SQLite, cheap bcrypt, and a broker wired with a
fake clock and a fake upstream IdP so no test touches the network or sleeps.
"""
import os

# Must be set before oauth_broker.config is imported
os.environ["OAUTH_BROKER_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OAUTH_BROKER_BCRYPT_ROUNDS"] = "4"
os.environ["OAUTH_BROKER_BASE_URL"] = "https://broker.example"
os.environ.pop("OAUTH_BROKER_AUDIT_ENDPOINT", None)
os.environ.pop("OAUTH_BROKER_RESOURCE_PATH", None)
os.environ.pop("OAUTH_BROKER_CALLBACK_PATH", None)

from urllib.parse import urlencode  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from oauth_broker.database import init_db  # noqa: E402
from oauth_broker.main import app  # noqa: E402
from oauth_broker.rate_limit import limiter  # noqa: E402
from oauth_broker.runtime import build_broker, get_broker  # noqa: E402
from oauth_broker.upstream import UpstreamTokens  # noqa: E402

UPSTREAM_SCOPE = "https://www.googleapis.com/auth/tagmanager.readonly"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Stands in for UpstreamIdP. Set exchange_error / refresh_error to make the next call fail."""

    def __init__(self):
        self.exchanges: list[tuple[str, str]] = []
        self.refreshes: list[str] = []
        self.tokens = UpstreamTokens(
            access_token="upstream-access-1",
            refresh_token="upstream-refresh-1",
            expires_in=3600,
            scope=UPSTREAM_SCOPE,
        )
        self.refreshed_tokens = UpstreamTokens(access_token="upstream-access-2", expires_in=3600)
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None

    def authorization_url(self, *, redirect_uri: str, state: str) -> str:
        return "https://idp.example/authorize?" + urlencode({"redirect_uri": redirect_uri, "state": state})

    def exchange_code(self, code: str, redirect_uri: str) -> UpstreamTokens:
        self.exchanges.append((code, redirect_uri))
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.tokens

    def refresh(self, refresh_token: str) -> UpstreamTokens:
        self.refreshes.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refreshed_tokens


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def broker(clock, upstream):
    return build_broker(clock=clock, upstream=upstream)


@pytest.fixture
def client(broker):
    init_db()
    app.dependency_overrides[get_broker] = lambda: broker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_broker, None)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()

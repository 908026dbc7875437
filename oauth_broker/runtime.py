"""
Process-wide broker instance built from config (module-level state, set at app startup).
Routers depend on get_broker; tests override it via app.dependency_overrides.
"""
import logging
import time

from oauth_broker import config
from oauth_broker.broker import AuthorizationBroker
from oauth_broker.clients import ClientRegistry
from oauth_broker.clocked_store import Clock
from oauth_broker.codes import AuthorizationCodeStore
from oauth_broker.crypto import TokenCipher
from oauth_broker.pkce import PkceChallengeStore
from oauth_broker.sessions import SessionStore
from oauth_broker.sweeper import Sweeper
from oauth_broker.upstream import UpstreamIdP

logger = logging.getLogger(__name__)

_broker: AuthorizationBroker | None = None


def build_upstream() -> UpstreamIdP:
    if not config.UPSTREAM_CLIENT_ID or not config.UPSTREAM_CLIENT_SECRET:
        logger.warning("OAUTH_UPSTREAM_CLIENT_ID / OAUTH_UPSTREAM_CLIENT_SECRET not set; upstream exchange will fail")
    return UpstreamIdP(
        client_id=config.UPSTREAM_CLIENT_ID,
        client_secret=config.UPSTREAM_CLIENT_SECRET,
        authorize_url=config.UPSTREAM_AUTHORIZE_URL,
        token_url=config.UPSTREAM_TOKEN_URL,
        scopes=config.UPSTREAM_SCOPES,
        authorize_params=config.UPSTREAM_AUTHORIZE_PARAMS,
        timeout=config.UPSTREAM_TIMEOUT_SECONDS,
    )


def build_broker(*, clock: Clock = time.time, upstream=None) -> AuthorizationBroker:
    """Wire stores, upstream client and broker from config. clock/upstream are injectable for tests."""
    return AuthorizationBroker(
        registry=ClientRegistry(
            default_redirect_uris=[config.CALLBACK_URL],
            default_scope=" ".join(config.UPSTREAM_SCOPES),
            ttl_seconds=config.CLIENT_SECRET_TTL_SECONDS,
            bcrypt_rounds=config.BCRYPT_ROUNDS,
            clock=clock,
        ),
        challenges=PkceChallengeStore(config.CHALLENGE_TTL_SECONDS, clock=clock),
        sessions=SessionStore(
            config.SESSION_TTL_SECONDS,
            cipher=TokenCipher(config.TOKEN_ENCRYPTION_KEY),
            default_upstream_expires_in=config.UPSTREAM_DEFAULT_EXPIRES_IN,
            pending_ttl_seconds=config.CHALLENGE_TTL_SECONDS + config.UPSTREAM_TIMEOUT_SECONDS,
            clock=clock,
        ),
        codes=AuthorizationCodeStore(config.CODE_TTL_SECONDS, clock=clock),
        upstream=upstream if upstream is not None else build_upstream(),
        callback_url=config.CALLBACK_URL,
        resource_uri=config.RESOURCE_URI,
        clock=clock,
    )


def get_broker() -> AuthorizationBroker:
    """Dependency: the process broker, created on first use."""
    global _broker
    if _broker is None:
        _broker = build_broker()
    return _broker


def build_sweeper(broker: AuthorizationBroker) -> Sweeper:
    return Sweeper(broker.sweep, config.SWEEP_INTERVAL_SECONDS)

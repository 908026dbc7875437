"""
Request-scoped authorization context for the resource layer.
Set once per authenticated request; read by code that calls the wrapped third-party API.
"""
import re
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass

from oauth_broker.broker import UpstreamCredential

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class AuthContext:
    authorization: str
    access_token: str | None = None
    credential: UpstreamCredential | None = None


_current: ContextVar[AuthContext | None] = ContextVar("oauth_broker_auth_context", default=None)


def parse_authorization_header(authorization: str | None) -> AuthContext | None:
    """Bearer header -> context with access_token; any other scheme keeps only the raw header."""
    if not authorization or not authorization.strip():
        return None
    match = _BEARER.match(authorization.strip())
    if match:
        return AuthContext(authorization=authorization, access_token=match.group(1).strip())
    return AuthContext(authorization=authorization)


def get_auth_context() -> AuthContext | None:
    return _current.get()


def set_auth_context(context: AuthContext | None) -> Token:
    return _current.set(context)


def reset_auth_context(token: Token) -> None:
    _current.reset(token)


@contextmanager
def auth_context(context: AuthContext):
    token = _current.set(context)
    try:
        yield context
    finally:
        _current.reset(token)


def upstream_authorization_headers() -> dict[str, str]:
    """Authorization header for outbound calls to the wrapped API, from the current context."""
    context = _current.get()
    if context is None or context.credential is None:
        raise LookupError("No upstream credential in the current request context")
    return {"Authorization": f"Bearer {context.credential.access_token}"}

"""
PKCE (RFC 7636) challenge store. S256 only.
Binds one authorization attempt (relying party client, redirect_uri, its own state, challenge,
broker session) to a fresh broker-internal state_token sent to the upstream IdP.
"""
import hashlib
import hmac
import logging
import secrets
import time
from base64 import urlsafe_b64encode
from dataclasses import dataclass

from oauth_broker.clocked_store import Clock, ClockedStore
from oauth_broker.errors import InvalidRequest, UnsupportedCodeChallengeMethod

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("S256",)


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_verifier(code_verifier: str, code_challenge: str | None, method: str | None) -> bool:
    if method != "S256" or not code_challenge:
        return False
    try:
        computed = s256_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed, code_challenge)


def require_supported_method(method: str | None) -> None:
    if method not in SUPPORTED_METHODS:
        raise UnsupportedCodeChallengeMethod()


@dataclass(frozen=True)
class PkceChallenge:
    state_token: str
    client_id: str
    redirect_uri: str
    original_state: str | None
    code_challenge: str
    code_challenge_method: str
    session_id: str
    created_at: float
    resource: str | None = None


class PkceChallengeStore:
    def __init__(self, ttl_seconds: float = 600, *, clock: Clock = time.time):
        self._challenges: ClockedStore[str, PkceChallenge] = ClockedStore(ttl_seconds, clock=clock)
        self._clock = clock

    def begin(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        original_state: str | None,
        code_challenge: str,
        code_challenge_method: str,
        session_id: str,
        resource: str | None = None,
    ) -> str:
        """Store the attempt; returns the new state_token. The caller's state is kept as original_state."""
        require_supported_method(code_challenge_method)
        if not code_challenge:
            raise InvalidRequest("code_challenge is required")
        state_token = secrets.token_urlsafe(32)
        self._challenges.put(
            state_token,
            PkceChallenge(
                state_token=state_token,
                client_id=client_id,
                redirect_uri=redirect_uri,
                original_state=original_state or None,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                session_id=session_id,
                created_at=self._clock(),
                resource=resource,
            ),
        )
        return state_token

    def consume(self, state_token: str | None) -> PkceChallenge | None:
        """One-time retrieval; the entry is gone afterwards whether or not it had expired."""
        if not state_token:
            return None
        return self._challenges.pop(state_token)

    def sweep(self) -> int:
        return self._challenges.sweep()

    def __len__(self) -> int:
        return len(self._challenges)

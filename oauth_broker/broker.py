"""
Authorization broker: authorization server towards relying parties, OAuth client towards the
upstream IdP. Drives both authorization-code handshakes and owns the four stores.

Two different "state" values are in flight per attempt:
- original_state: the relying party's opaque state, echoed back to it unchanged;
- state_token: the broker's own random state, sent to (and returned by) the upstream IdP.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth_broker.clients import ClientRegistry, RegisteredClient
from oauth_broker.clocked_store import Clock
from oauth_broker.codes import AuthorizationCodeStore
from oauth_broker.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidTarget,
    OAuthError,
    Unauthorized,
    UnsupportedGrantType,
    UnsupportedResponseType,
    UpstreamError,
)
from oauth_broker.pkce import PkceChallengeStore, require_supported_method, verify_code_verifier
from oauth_broker.sessions import Session, SessionStore
from oauth_broker.upstream import UpstreamIdP, UpstreamRejected

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    STARTED = "started"
    UPSTREAM_REDIRECTED = "upstream_redirected"
    UPSTREAM_CALLBACK_RECEIVED = "upstream_callback_received"
    CODE_ISSUED = "code_issued"
    EXCHANGED = "exchanged"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass(frozen=True)
class UpstreamCredential:
    """What the resource layer needs to call the wrapped API on behalf of a relying party."""

    access_token: str
    refresh_token: str | None
    expires_at: float | None
    scope: str | None
    client_id: str
    session_id: str

    def expires_in(self, now: float) -> int:
        if self.expires_at is None:
            return 0
        return max(0, int(self.expires_at - now))


@dataclass(frozen=True)
class CallbackRedirect:
    """Where to send the user agent after the upstream hop, and for which relying party."""

    url: str
    client_id: str


def _with_query(url: str, params: dict[str, str]) -> str:
    """Append params to url, keeping any query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _flow_ref(session_id: str) -> str:
    return session_id[:8]


class AuthorizationBroker:
    def __init__(
        self,
        *,
        registry: ClientRegistry,
        challenges: PkceChallengeStore,
        sessions: SessionStore,
        codes: AuthorizationCodeStore,
        upstream: UpstreamIdP,
        callback_url: str,
        resource_uri: str,
        clock: Clock = time.time,
    ):
        self.registry = registry
        self.challenges = challenges
        self.sessions = sessions
        self.codes = codes
        self.upstream = upstream
        self.callback_url = callback_url
        self.resource_uri = resource_uri
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def _transition(self, session_id: str, state: FlowState, client_id: str | None = None) -> None:
        logger.info("authorization %s (client %s): %s", _flow_ref(session_id), client_id, state.value)

    # --- registration ---

    def register_client(self, requested: dict | None) -> tuple[RegisteredClient, str]:
        return self.registry.register(requested)

    # --- authorization endpoint ---

    def authorize(
        self,
        *,
        client_id: str | None,
        redirect_uri: str | None,
        code_challenge: str | None,
        code_challenge_method: str | None,
        state: str | None = None,
        resource: str | None = None,
        response_type: str | None = None,
    ) -> str:
        """Validate the relying party's request, start a session and return the upstream authorize URL."""
        if not client_id or not redirect_uri or not code_challenge or not code_challenge_method:
            raise InvalidRequest("client_id, redirect_uri, code_challenge and code_challenge_method are required")
        if response_type is not None and response_type != "code":
            raise UnsupportedResponseType()
        client = self.registry.lookup(client_id)
        if client is None:
            raise InvalidClient("Unknown client_id")
        self.registry.check_redirect_uri(client, redirect_uri)
        if resource and resource != self.resource_uri:
            raise InvalidTarget(f"Invalid resource parameter. Expected: {self.resource_uri}")
        require_supported_method(code_challenge_method)

        session = self.sessions.create(client_id)
        self._transition(session.session_id, FlowState.STARTED, client_id)
        try:
            state_token = self.challenges.begin(
                client_id=client_id,
                redirect_uri=redirect_uri,
                original_state=state,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                session_id=session.session_id,
                resource=resource or None,
            )
        except OAuthError:
            self.sessions.remove(session.session_id)
            raise
        url = self.upstream.authorization_url(redirect_uri=self.callback_url, state=state_token)
        self._transition(session.session_id, FlowState.UPSTREAM_REDIRECTED, client_id)
        return url

    # --- upstream callback ---

    def upstream_callback(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackRedirect:
        """Finish the upstream hop; returns the relying-party redirect carrying the broker code."""
        if error:
            challenge = self.challenges.consume(state)
            if challenge is not None:
                self.sessions.remove(challenge.session_id)
                self._transition(challenge.session_id, FlowState.FAILED, challenge.client_id)
            logger.info("Upstream returned error=%s on callback", error)
            raise UpstreamError(f"Upstream authorization failed: {error}", status_code=400)
        if not code or not state:
            raise InvalidRequest("code and state are required")

        challenge = self.challenges.consume(state)
        if challenge is None:
            raise InvalidRequest("Invalid or expired state")
        self._transition(challenge.session_id, FlowState.UPSTREAM_CALLBACK_RECEIVED, challenge.client_id)

        if self.sessions.get_by_session_id(challenge.session_id) is None:
            self._transition(challenge.session_id, FlowState.EXPIRED, challenge.client_id)
            raise InvalidRequest("Authorization session expired")

        # Network call; no store lock is held here
        try:
            tokens = self.upstream.exchange_code(code, self.callback_url)
        except UpstreamError:
            self.sessions.remove(challenge.session_id)
            self._transition(challenge.session_id, FlowState.FAILED, challenge.client_id)
            raise

        bound = self.sessions.bind_upstream_tokens(
            challenge.session_id,
            tokens.access_token,
            tokens.refresh_token,
            tokens.expires_in,
            tokens.scope,
        )
        if bound is None:
            self._transition(challenge.session_id, FlowState.EXPIRED, challenge.client_id)
            raise InvalidRequest("Authorization session expired")

        broker_code = self.codes.issue(
            challenge.client_id,
            challenge.session_id,
            challenge.redirect_uri,
            challenge.code_challenge,
            challenge.code_challenge_method,
        )
        self._transition(challenge.session_id, FlowState.CODE_ISSUED, challenge.client_id)
        params = {"code": broker_code}
        if challenge.original_state:
            params["state"] = challenge.original_state
        return CallbackRedirect(url=_with_query(challenge.redirect_uri, params), client_id=challenge.client_id)

    # --- token endpoint ---

    def token(
        self,
        *,
        grant_type: str | None,
        code: str | None,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
    ) -> dict:
        if grant_type != "authorization_code":
            raise UnsupportedGrantType()
        if not code:
            raise InvalidRequest("code is required")
        if not client_id:
            raise InvalidRequest("client_id is required")

        pending = self.codes.peek(code)
        if pending is None or pending.client_id != client_id:
            # Unknown code, or presented by another client: burn it and fail with invalid_grant
            self.codes.redeem(code, client_id)
        # The owning client must authenticate before the code is consumed
        client = self.registry.validate(client_id, client_secret, redirect_uri)
        # From here the code is dead whatever happens next
        record = self.codes.redeem(code, client_id)
        if redirect_uri is not None and redirect_uri != record.redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")
        if code_verifier is not None and not verify_code_verifier(
            code_verifier, record.code_challenge, record.code_challenge_method
        ):
            raise InvalidGrant("PKCE verification failed")

        session = self.sessions.get_by_session_id(record.session_id)
        if session is None:
            self._transition(record.session_id, FlowState.EXPIRED, client_id)
            raise InvalidGrant("Authorization session expired")
        if not session.has_upstream_tokens:
            raise InvalidGrant("Upstream authorization incomplete")

        self._transition(session.session_id, FlowState.EXCHANGED, client_id)
        return {
            "access_token": session.broker_access_token,
            "refresh_token": session.broker_refresh_token,
            "token_type": "Bearer",
            "expires_in": session.upstream_expires_in(self._clock()),
            "scope": session.upstream_scope or client.scope,
        }

    # --- credential lookup for the resource layer ---

    def resolve_credential(self, bearer_token: str | None) -> UpstreamCredential:
        session = self.sessions.get_by_broker_access_token(bearer_token)
        if session is None or not session.has_upstream_tokens:
            raise Unauthorized()
        if session.upstream_expired(self._clock()):
            if not session.upstream_refresh_token:
                raise Unauthorized("Upstream credentials expired")
            try:
                session = self.refresh_upstream(session)
            except UpstreamRejected:
                raise Unauthorized("Upstream credentials expired; re-authorization required")
        return UpstreamCredential(
            access_token=session.upstream_access_token,
            refresh_token=session.upstream_refresh_token,
            expires_at=session.upstream_expires_at,
            scope=session.upstream_scope,
            client_id=session.client_id,
            session_id=session.session_id,
        )

    def refresh_upstream(self, session: Session) -> Session:
        """Refresh the session's upstream access token; keeps the old refresh token if none is returned."""
        if not session.upstream_refresh_token:
            raise Unauthorized("No upstream refresh token")
        tokens = self.upstream.refresh(session.upstream_refresh_token)
        updated = self.sessions.bind_upstream_tokens(
            session.session_id,
            tokens.access_token,
            tokens.refresh_token or session.upstream_refresh_token,
            tokens.expires_in,
            tokens.scope or session.upstream_scope,
        )
        if updated is None:
            raise Unauthorized()
        logger.info("Refreshed upstream token for client %s", session.client_id)
        return updated

    # --- maintenance ---

    def sweep(self) -> int:
        clients = self.registry.sweep()
        challenges = self.challenges.sweep()
        sessions = self.sessions.sweep()
        codes = self.codes.sweep()
        total = clients + challenges + sessions + codes
        if total:
            logger.info(
                "Swept expired entries: clients=%d auth_states=%d sessions=%d codes=%d",
                clients,
                challenges,
                sessions,
                codes,
            )
        return total

    def stats(self) -> dict[str, int]:
        return {
            "clients": len(self.registry),
            "auth_states": len(self.challenges),
            "sessions": len(self.sessions),
            "authorization_codes": len(self.codes),
        }

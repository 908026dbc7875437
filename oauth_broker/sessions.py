"""
Broker sessions: one per authorization attempt, bound to a relying-party client.
Holds the broker-issued access/refresh token pair and, once the upstream handshake completes,
the upstream IdP tokens (encrypted at rest in the store).
"""
import logging
import secrets
import time
from dataclasses import dataclass, replace

from oauth_broker.clocked_store import Clock, ClockedStore
from oauth_broker.crypto import TokenCipher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    session_id: str
    client_id: str
    broker_access_token: str
    broker_refresh_token: str
    created_at: float
    expires_at: float
    upstream_access_token: str | None = None
    upstream_refresh_token: str | None = None
    upstream_expires_at: float | None = None
    upstream_scope: str | None = None

    @property
    def has_upstream_tokens(self) -> bool:
        return bool(self.upstream_access_token)

    def upstream_expires_in(self, now: float) -> int:
        """Remaining upstream token lifetime in whole seconds, never negative."""
        if self.upstream_expires_at is None:
            return 0
        return max(0, int(self.upstream_expires_at - now))

    def upstream_expired(self, now: float) -> bool:
        return self.upstream_expires_at is not None and now >= self.upstream_expires_at


class SessionStore:
    """
    Sessions keyed by session_id with O(1) secondary indexes on broker access token and client_id.
    Sessions are immutable; bind_upstream_tokens swaps in a new object under the shard lock so
    concurrent readers see either the old or the new session, never a mix.
    A session that never receives upstream tokens is dropped by sweep() once pending_ttl_seconds
    have passed since creation.
    """

    def __init__(
        self,
        ttl_seconds: float = 7 * 24 * 3600,
        *,
        cipher: TokenCipher | None = None,
        default_upstream_expires_in: int = 3600,
        pending_ttl_seconds: float | None = None,
        clock: Clock = time.time,
    ):
        self._sessions: ClockedStore[str, Session] = ClockedStore(ttl_seconds, clock=clock)
        self._by_access_token: ClockedStore[str, str] = ClockedStore(ttl_seconds, clock=clock)
        # client_id -> session ids, oldest first
        self._by_client: ClockedStore[str, tuple[str, ...]] = ClockedStore(ttl_seconds, clock=clock)
        self._cipher = cipher or TokenCipher()
        self._default_upstream_expires_in = default_upstream_expires_in
        self._pending_ttl = pending_ttl_seconds if pending_ttl_seconds is not None else ttl_seconds
        self._clock = clock

    def _reveal(self, stored: Session | None) -> Session | None:
        if stored is None:
            return None
        if stored.upstream_access_token is None:
            return stored
        return replace(
            stored,
            upstream_access_token=self._cipher.unseal(stored.upstream_access_token),
            upstream_refresh_token=self._cipher.unseal(stored.upstream_refresh_token),
        )

    def create(self, client_id: str) -> Session:
        now = self._clock()
        session = Session(
            session_id=secrets.token_hex(32),
            client_id=client_id,
            broker_access_token=secrets.token_hex(32),
            broker_refresh_token=secrets.token_hex(32),
            created_at=now,
            expires_at=now + self._sessions.ttl_seconds,
        )
        self._sessions.put(session.session_id, session, expires_at=session.expires_at)
        self._by_access_token.put(session.broker_access_token, session.session_id, expires_at=session.expires_at)
        self._by_client.upsert(
            client_id, lambda ids: (ids or ()) + (session.session_id,), expires_at=session.expires_at
        )
        logger.debug("Created session for client %s", client_id)
        return session

    def bind_upstream_tokens(
        self,
        session_id: str,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
        scope: str | None = None,
    ) -> Session | None:
        """Overwrite the session's upstream tokens. Returns the updated session, or None if not found."""
        lifetime = expires_in if expires_in and expires_in > 0 else self._default_upstream_expires_in
        expires_at = self._clock() + lifetime
        sealed_access = self._cipher.seal(access_token)
        sealed_refresh = self._cipher.seal(refresh_token)

        def _bind(session: Session) -> Session:
            return replace(
                session,
                upstream_access_token=sealed_access,
                upstream_refresh_token=sealed_refresh,
                upstream_expires_at=expires_at,
                upstream_scope=scope,
            )

        updated = self._sessions.update(session_id, _bind)
        if updated is None:
            return None
        return self._reveal(updated)

    def get_by_session_id(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        return self._reveal(self._sessions.get(session_id))

    def get_by_broker_access_token(self, access_token: str | None) -> Session | None:
        if not access_token:
            return None
        session_id = self._by_access_token.get(access_token)
        if session_id is None:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            self._by_access_token.discard(access_token)
            return None
        if session.broker_access_token != access_token:
            return None
        return self._reveal(session)

    def get_by_client_id(self, client_id: str | None) -> Session | None:
        """Most recently created live session of the client."""
        if not client_id:
            return None
        for session_id in reversed(self._by_client.get(client_id) or ()):
            session = self._sessions.get(session_id)
            if session is not None:
                return self._reveal(session)
        return None

    def _drop_indexes(self, session: Session) -> None:
        self._by_access_token.discard(session.broker_access_token)
        self._by_client.update(
            session.client_id, lambda ids: tuple(i for i in ids if i != session.session_id)
        )

    def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id)
        if session is None:
            return False
        self._drop_indexes(session)
        return True

    def sweep(self) -> int:
        """Drop expired sessions and sessions whose upstream handshake never completed."""
        cutoff = self._clock() - self._pending_ttl
        removed = self._sessions.evict_if(
            lambda s: s.upstream_access_token is None and s.created_at < cutoff
        )
        for session in removed:
            self._drop_indexes(session)
        self._by_access_token.sweep()
        self._by_client.evict_if(lambda ids: not ids)
        if removed:
            logger.debug("Swept %d sessions", len(removed))
        return len(removed)

    def __len__(self) -> int:
        return len(self._sessions)

"""
Single-use authorization codes issued to relying parties after the upstream handshake.
"""
import logging
import secrets
import time
from dataclasses import dataclass

from oauth_broker.clocked_store import Clock, ClockedStore
from oauth_broker.errors import InvalidGrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationCode:
    code: str
    client_id: str
    session_id: str
    redirect_uri: str
    created_at: float
    code_challenge: str | None = None
    code_challenge_method: str | None = None


class AuthorizationCodeStore:
    def __init__(self, ttl_seconds: float = 600, *, clock: Clock = time.time):
        self._codes: ClockedStore[str, AuthorizationCode] = ClockedStore(ttl_seconds, clock=clock)
        self._clock = clock

    def issue(
        self,
        client_id: str,
        session_id: str,
        redirect_uri: str,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
    ) -> str:
        code = secrets.token_urlsafe(32)
        self._codes.put(
            code,
            AuthorizationCode(
                code=code,
                client_id=client_id,
                session_id=session_id,
                redirect_uri=redirect_uri,
                created_at=self._clock(),
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
            ),
        )
        return code

    def peek(self, code: str | None) -> AuthorizationCode | None:
        """Live record for code without consuming it."""
        return self._codes.get(code) if code else None

    def redeem(self, code: str | None, expected_client_id: str | None) -> AuthorizationCode:
        """
        Consume the code. Unknown, expired, replayed and wrong-client codes all raise the same
        InvalidGrant so callers cannot tell them apart. A wrong-client attempt still burns the code.
        """
        record = self._codes.pop(code) if code else None
        if record is None:
            raise InvalidGrant()
        if record.client_id != expected_client_id:
            logger.warning(
                "Authorization code issued to client %s presented by client %s",
                record.client_id,
                expected_client_id,
            )
            raise InvalidGrant()
        return record

    def sweep(self) -> int:
        return self._codes.sweep()

    def __len__(self) -> int:
        return len(self._codes)

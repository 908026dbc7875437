"""
Dynamic client registration (RFC 7591) for relying parties.
Liberal: malformed optional fields are defaulted, never rejected.
Client secrets are returned once and stored only as bcrypt hashes.
"""
import logging
import secrets
import time
import uuid
from dataclasses import dataclass

import bcrypt

from oauth_broker.clocked_store import Clock, ClockedStore
from oauth_broker.errors import InvalidClient, InvalidRedirectUri

logger = logging.getLogger(__name__)

DEFAULT_GRANT_TYPES = ("authorization_code",)
DEFAULT_RESPONSE_TYPES = ("code",)
TOKEN_ENDPOINT_AUTH_METHOD = "client_secret_post"


def hash_secret(secret: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    # bcrypt.checkpw compares in constant time
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _string_list(value, default: tuple[str, ...]) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return default
    items = tuple(v.strip() for v in value if isinstance(v, str) and v.strip())
    return items or default


@dataclass(frozen=True)
class RegisteredClient:
    client_id: str
    client_secret_hash: str
    redirect_uris: tuple[str, ...]
    grant_types: tuple[str, ...]
    response_types: tuple[str, ...]
    scope: str
    issued_at: int
    secret_expires_at: int
    client_name: str | None = None

    def redirect_uri_allowed(self, uri: str) -> bool:
        return uri in self.redirect_uris

    def registration_response(self, client_secret: str) -> dict:
        """RFC 7591 §3.2.1 body. The only place the plaintext secret is ever returned."""
        body = {
            "client_id": self.client_id,
            "client_secret": client_secret,
            "client_id_issued_at": self.issued_at,
            "client_secret_expires_at": self.secret_expires_at,
            "redirect_uris": list(self.redirect_uris),
            "grant_types": list(self.grant_types),
            "response_types": list(self.response_types),
            "scope": self.scope,
            "token_endpoint_auth_method": TOKEN_ENDPOINT_AUTH_METHOD,
        }
        if self.client_name:
            body["client_name"] = self.client_name
        return body


class ClientRegistry:
    def __init__(
        self,
        *,
        default_redirect_uris: list[str],
        default_scope: str = "",
        ttl_seconds: float = 7 * 24 * 3600,
        bcrypt_rounds: int = 12,
        clock: Clock = time.time,
    ):
        self._clients: ClockedStore[str, RegisteredClient] = ClockedStore(ttl_seconds, clock=clock)
        self._default_redirect_uris = tuple(default_redirect_uris)
        self._default_scope = default_scope
        self._bcrypt_rounds = bcrypt_rounds
        self._clock = clock

    def register(self, requested: dict | None) -> tuple[RegisteredClient, str]:
        """Create a client from a registration request. Returns (client, plaintext client_secret)."""
        requested = requested if isinstance(requested, dict) else {}
        scope = requested.get("scope")
        client_name = requested.get("client_name")
        client_secret = secrets.token_hex(32)
        issued_at = int(self._clock())
        expires_at = issued_at + int(self._clients.ttl_seconds)
        client = RegisteredClient(
            client_id=str(uuid.uuid4()),
            client_secret_hash=hash_secret(client_secret, self._bcrypt_rounds),
            redirect_uris=_string_list(requested.get("redirect_uris"), self._default_redirect_uris),
            grant_types=_string_list(requested.get("grant_types"), DEFAULT_GRANT_TYPES),
            response_types=_string_list(requested.get("response_types"), DEFAULT_RESPONSE_TYPES),
            scope=scope.strip() if isinstance(scope, str) and scope.strip() else self._default_scope,
            issued_at=issued_at,
            secret_expires_at=expires_at,
            client_name=client_name if isinstance(client_name, str) and client_name else None,
        )
        self._clients.put(client.client_id, client, expires_at=float(expires_at))
        logger.info("Registered client %s (%d redirect URIs)", client.client_id, len(client.redirect_uris))
        return client, client_secret

    def lookup(self, client_id: str | None) -> RegisteredClient | None:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def check_redirect_uri(self, client: RegisteredClient, redirect_uri: str) -> None:
        if not client.redirect_uri_allowed(redirect_uri):
            logger.info("redirect_uri not registered for client %s", client.client_id)
            raise InvalidRedirectUri()

    def validate(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None = None,
    ) -> RegisteredClient:
        """Authenticate a client. Raises InvalidClient (unknown, bad secret, expired) or InvalidRedirectUri."""
        if not client_id:
            raise InvalidClient("client_id is required")
        client = self._clients.get(client_id, include_expired=True)
        if client is None:
            raise InvalidClient("Unknown client")
        if self._clock() > client.secret_expires_at:
            logger.info("client_expired: client %s registration has expired", client_id)
            self._clients.discard(client_id)
            raise InvalidClient("Client registration expired")
        if not client_secret or not verify_secret(client_secret, client.client_secret_hash):
            logger.info("Bad client_secret for client %s", client_id)
            raise InvalidClient("Invalid client credentials")
        if redirect_uri is not None:
            self.check_redirect_uri(client, redirect_uri)
        return client

    def sweep(self) -> int:
        return self._clients.sweep()

    def __len__(self) -> int:
        return len(self._clients)

"""
Bearer authentication for the protected resource. A broker access token resolves to the upstream
credential bound to its session; the credential is published in the request's auth context.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from oauth_broker.auth_context import AuthContext, set_auth_context
from oauth_broker.broker import AuthorizationBroker, UpstreamCredential
from oauth_broker.errors import Unauthorized
from oauth_broker.runtime import get_broker
from oauth_broker.well_known import PROTECTED_RESOURCE_METADATA_URL

logger = logging.getLogger(__name__)
router = APIRouter()

security = HTTPBearer(auto_error=False)


def bearer_challenge(error: str | None = None) -> dict[str, str]:
    """WWW-Authenticate header pointing clients at the protected resource metadata."""
    value = "Bearer"
    if error:
        value += f' error="{error}",'
    value += f' resource_metadata="{PROTECTED_RESOURCE_METADATA_URL}"'
    return {"WWW-Authenticate": value}


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Extract Bearer token from Authorization header. Raises 401 if missing."""
    if credentials is None:
        raise Unauthorized("Bearer token required", headers=bearer_challenge())
    return credentials.credentials


async def require_upstream_credential(
    request: Request,
    token: Annotated[str, Depends(get_bearer_token)],
    broker: Annotated[AuthorizationBroker, Depends(get_broker)],
) -> UpstreamCredential:
    """
    Dependency: resolve the bearer token (refreshing the upstream token if it has expired)
    and set the auth context for the rest of the request.
    """
    try:
        credential = await run_in_threadpool(broker.resolve_credential, token)
    except Unauthorized as e:
        logger.debug("Bearer token rejected: %s", e.description)
        raise Unauthorized(e.description, headers=bearer_challenge("invalid_token"))
    set_auth_context(
        AuthContext(
            authorization=request.headers.get("Authorization", ""),
            access_token=token,
            credential=credential,
        )
    )
    return credential


RequireCredential = Depends(require_upstream_credential)


@router.get("/me")
def me(
    credential: UpstreamCredential = RequireCredential,
    broker: AuthorizationBroker = Depends(get_broker),
):
    """Non-secret view of the credential behind the caller's broker token."""
    return {
        "client_id": credential.client_id,
        "scope": credential.scope,
        "expires_in": credential.expires_in(broker.now()),
    }

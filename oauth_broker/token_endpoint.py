"""
Token endpoint (POST /token). authorization_code grant only: exchanges a broker code for the
session's broker access/refresh tokens. Accepts form-encoded or JSON bodies.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from oauth_broker import rate_limit
from oauth_broker.audit import EVENT_TOKEN_ISSUED, OUTCOME_FAIL, get_client_ip, log_audit
from oauth_broker.broker import AuthorizationBroker
from oauth_broker.client_auth import client_credentials
from oauth_broker.config import RATE_LIMIT_TOKEN_PER_MINUTE
from oauth_broker.database import get_db
from oauth_broker.errors import InvalidRequest, OAuthError
from oauth_broker.runtime import get_broker

logger = logging.getLogger(__name__)
router = APIRouter()


async def token_request(request: Request) -> dict[str, str]:
    """String parameters of the token request body (application/json or form-encoded)."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequest("Malformed JSON body")
        if not isinstance(body, dict):
            raise InvalidRequest("Token request body must be a JSON object")
        return {k: v for k, v in body.items() if isinstance(v, str)}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


@router.post("/token")
def token(
    request: Request,
    params: dict[str, str] = Depends(token_request),
    broker: AuthorizationBroker = Depends(get_broker),
    db: Session = Depends(get_db),
):
    """
    Redeem a broker authorization code. A wrong secret from the owning client leaves the code
    usable; once the client authenticates, the code is consumed even if a later check fails.
    """
    ip = get_client_ip(request)
    rate_limit.enforce(f"token:{ip}", RATE_LIMIT_TOKEN_PER_MINUTE)
    client_id, client_secret = client_credentials(request, params)
    try:
        body = broker.token(
            grant_type=params.get("grant_type"),
            code=params.get("code"),
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=params.get("redirect_uri") or None,
            code_verifier=params.get("code_verifier") or None,
        )
    except OAuthError as e:
        log_audit(db, EVENT_TOKEN_ISSUED, client_id=client_id, ip=ip, outcome=OUTCOME_FAIL, error=e.error)
        raise
    log_audit(db, EVENT_TOKEN_ISSUED, client_id=client_id, ip=ip)
    logger.info("Issued broker tokens to client %s", client_id)
    return JSONResponse(body, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})

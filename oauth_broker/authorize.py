"""
Browser-facing half of the broker: GET /authorize (relying party -> upstream IdP)
and GET /callback (upstream IdP -> relying party).
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from oauth_broker import rate_limit
from oauth_broker.audit import (
    EVENT_AUTHORIZE,
    EVENT_CODE_ISSUED,
    EVENT_UPSTREAM_CALLBACK,
    OUTCOME_FAIL,
    get_client_ip,
    log_audit,
)
from oauth_broker.broker import AuthorizationBroker
from oauth_broker.config import CALLBACK_PATH, RATE_LIMIT_AUTHORIZE_PER_MINUTE
from oauth_broker.database import get_db
from oauth_broker.errors import OAuthError
from oauth_broker.runtime import get_broker

router = APIRouter()


@router.get("/authorize")
def authorize(
    request: Request,
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    resource: str | None = None,
    broker: AuthorizationBroker = Depends(get_broker),
    db: Session = Depends(get_db),
):
    """Validate the relying party's request and send the user agent to the upstream consent page."""
    ip = get_client_ip(request)
    rate_limit.enforce(f"authorize:{ip}", RATE_LIMIT_AUTHORIZE_PER_MINUTE)
    try:
        url = broker.authorize(
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
            resource=resource,
            response_type=response_type,
        )
    except OAuthError as e:
        log_audit(db, EVENT_AUTHORIZE, client_id=client_id, ip=ip, outcome=OUTCOME_FAIL, error=e.error)
        raise
    log_audit(db, EVENT_AUTHORIZE, client_id=client_id, ip=ip)
    return RedirectResponse(url=url, status_code=302)


@router.get(CALLBACK_PATH)
def upstream_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    broker: AuthorizationBroker = Depends(get_broker),
    db: Session = Depends(get_db),
):
    """
    Upstream IdP redirects here. Exchanges the upstream code, binds the upstream tokens to the
    session, and redirects to the relying party with a broker code and its original state.
    """
    ip = get_client_ip(request)
    try:
        redirect = broker.upstream_callback(
            code=code,
            state=state,
            error=error,
            error_description=error_description,
        )
    except OAuthError as e:
        log_audit(db, EVENT_UPSTREAM_CALLBACK, ip=ip, outcome=OUTCOME_FAIL, error=e.error)
        raise
    log_audit(db, EVENT_CODE_ISSUED, client_id=redirect.client_id, ip=ip)
    return RedirectResponse(url=redirect.url, status_code=302)

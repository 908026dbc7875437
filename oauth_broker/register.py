"""
Dynamic client registration (POST /register, RFC 7591 subset).
Unknown or malformed fields fall back to defaults; registration itself never fails on the body.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from oauth_broker import rate_limit
from oauth_broker.audit import EVENT_CLIENT_REGISTERED, get_client_ip, log_audit
from oauth_broker.broker import AuthorizationBroker
from oauth_broker.config import RATE_LIMIT_REGISTER_PER_MINUTE
from oauth_broker.database import get_db
from oauth_broker.runtime import get_broker

router = APIRouter()


async def registration_request(request: Request) -> dict:
    """JSON object body, or {} when the body is empty, not JSON, or not an object."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/register", status_code=201)
def register(
    request: Request,
    body: dict = Depends(registration_request),
    broker: AuthorizationBroker = Depends(get_broker),
    db: Session = Depends(get_db),
):
    ip = get_client_ip(request)
    rate_limit.enforce(f"register:{ip}", RATE_LIMIT_REGISTER_PER_MINUTE)
    client, client_secret = broker.register_client(body)
    log_audit(db, EVENT_CLIENT_REGISTERED, client_id=client.client_id, ip=ip)
    return JSONResponse(
        client.registration_response(client_secret),
        status_code=201,
        headers={"Cache-Control": "no-store"},
    )

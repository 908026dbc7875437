"""
Audit logging. Security-relevant events only; no tokens, codes, secrets or full request bodies.
GET /audit lists recent events when OAUTH_BROKER_AUDIT_ENDPOINT is enabled.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from oauth_broker import config
from oauth_broker.database import get_db
from oauth_broker.models import AuditLog

EVENT_CLIENT_REGISTERED = "client_registered"
EVENT_AUTHORIZE = "authorize_redirect"
EVENT_UPSTREAM_CALLBACK = "upstream_callback"
EVENT_CODE_ISSUED = "code_issued"
EVENT_TOKEN_ISSUED = "token_issued"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    client_id: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
    error: str | None = None,
) -> None:
    """Append one audit record."""
    db.add(
        AuditLog(
            event_type=event_type,
            client_id=client_id[:255] if client_id else None,
            ip=ip,
            outcome=outcome,
            error=error,
        )
    )
    db.commit()


router = APIRouter(tags=["audit"])


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
) -> list[dict]:
    """Most recent first, optional filters."""
    q = db.query(AuditLog).order_by(AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    if client_id:
        q = q.filter(AuditLog.client_id == client_id)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "client_id": r.client_id,
            "ip": r.ip,
            "outcome": r.outcome,
            "error": r.error,
        }
        for r in rows
    ]


@router.get("/audit")
def list_audit_logs(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
    db: Session = Depends(get_db),
):
    """Recent audit events. Disabled (404) unless OAUTH_BROKER_AUDIT_ENDPOINT is set."""
    if not config.AUDIT_ENDPOINT_ENABLED:
        raise HTTPException(status_code=404, detail="Not Found")
    return query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome, client_id=client_id)

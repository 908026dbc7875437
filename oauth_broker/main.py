"""
OAuth broker: authorization server for MCP relying parties, OAuth client of the upstream IdP.
Dynamic registration, /authorize -> upstream consent -> /callback -> broker code -> /token.
Port 3000 by default.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oauth_broker.audit import router as audit_router
from oauth_broker.authorize import router as authorize_router
from oauth_broker.broker import AuthorizationBroker
from oauth_broker.config import BASE_URL, CORS_ALLOW_ORIGINS, RESOURCE_URI
from oauth_broker.database import init_db
from oauth_broker.errors import OAuthError
from oauth_broker.register import router as register_router
from oauth_broker.resource_auth import router as resource_router
from oauth_broker.runtime import build_sweeper, get_broker
from oauth_broker.token_endpoint import router as token_router
from oauth_broker.well_known import router as well_known_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create audit tables, build the broker and run the expiry sweeper for the app's lifetime."""
    init_db()
    sweeper = build_sweeper(get_broker())
    sweeper.start()
    try:
        yield
    finally:
        sweeper.stop()


app = FastAPI(title="OAuth Broker", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    expose_headers=["WWW-Authenticate"],
)
app.include_router(register_router, tags=["register"])
app.include_router(authorize_router, tags=["authorize"])
app.include_router(token_router, tags=["token"])
app.include_router(well_known_router, tags=["well-known"])
app.include_router(resource_router, tags=["resource"])
app.include_router(audit_router)


@app.exception_handler(OAuthError)
async def oauth_error_handler(request: Request, exc: OAuthError):
    """Every broker error renders as flat {"error", "error_description"} JSON."""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=exc.headers)


@app.get("/health")
def health(broker: AuthorizationBroker = Depends(get_broker)):
    """Health check endpoint with store sizes."""
    return {"status": "ok", "service": "oauth_broker", "stores": broker.stats()}


@app.get("/")
def root():
    """Service discovery for MCP clients."""
    return {
        "name": "oauth-broker",
        "version": app.version,
        "resource": RESOURCE_URI,
        "auth_required": True,
        "auth_type": "oauth2",
        "oauth_discovery": f"{BASE_URL}/.well-known/oauth-authorization-server",
        "resource_metadata": f"{BASE_URL}/.well-known/oauth-protected-resource",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oauth_broker.main:app",
        host="127.0.0.1",
        port=3000,
        reload=True,
    )

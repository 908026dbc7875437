"""
OAuth broker configuration. All values come from the environment; no secrets in this file.
Upstream defaults target Google OAuth 2.0 for the Tag Manager API.
"""
import os
from urllib.parse import parse_qsl

# Externally visible base URL of this broker (issuer, callback and resource identifiers derive from it)
BASE_URL = os.environ.get("OAUTH_BROKER_BASE_URL", "http://127.0.0.1:3000").rstrip("/")

# Protected resource served behind the broker (RFC 8707 resource indicator must match)
RESOURCE_PATH = os.environ.get("OAUTH_BROKER_RESOURCE_PATH", "/mcp")
RESOURCE_URI = f"{BASE_URL}{RESOURCE_PATH}"

# Broker's own upstream-facing callback; registered at the upstream IdP
CALLBACK_PATH = os.environ.get("OAUTH_BROKER_CALLBACK_PATH", "/callback")
CALLBACK_URL = f"{BASE_URL}{CALLBACK_PATH}"

# Upstream IdP client credentials (broker is a confidential client of the IdP)
UPSTREAM_CLIENT_ID = os.environ.get("OAUTH_UPSTREAM_CLIENT_ID") or os.environ.get("OAUTH_CLIENT_ID", "")
UPSTREAM_CLIENT_SECRET = os.environ.get("OAUTH_UPSTREAM_CLIENT_SECRET") or os.environ.get("OAUTH_CLIENT_SECRET", "")

UPSTREAM_AUTHORIZE_URL = os.environ.get(
    "OAUTH_UPSTREAM_AUTHORIZE_URL", "https://accounts.google.com/o/oauth2/v2/auth"
)
UPSTREAM_TOKEN_URL = os.environ.get("OAUTH_UPSTREAM_TOKEN_URL", "https://oauth2.googleapis.com/token")

_DEFAULT_UPSTREAM_SCOPES = " ".join(
    [
        "https://www.googleapis.com/auth/tagmanager.edit.containers",
        "https://www.googleapis.com/auth/tagmanager.manage.accounts",
        "https://www.googleapis.com/auth/tagmanager.readonly",
    ]
)
# Space-separated scopes requested from the upstream IdP
UPSTREAM_SCOPES = os.environ.get("OAUTH_UPSTREAM_SCOPES", _DEFAULT_UPSTREAM_SCOPES).split()

# Extra query parameters for the upstream authorize URL (offline access yields a refresh token)
UPSTREAM_AUTHORIZE_PARAMS = dict(
    parse_qsl(os.environ.get("OAUTH_UPSTREAM_AUTHORIZE_PARAMS", "access_type=offline&prompt=consent"))
)

# Upstream HTTP timeout (seconds); a timeout fails the flow with a retryable error
UPSTREAM_TIMEOUT_SECONDS = float(os.environ.get("OAUTH_UPSTREAM_TIMEOUT_SECONDS", "10"))

# Used when the upstream token response omits expires_in
UPSTREAM_DEFAULT_EXPIRES_IN = 3600

# Lifetimes (seconds)
CLIENT_SECRET_TTL_SECONDS = int(os.environ.get("OAUTH_BROKER_CLIENT_TTL_SECONDS", str(7 * 24 * 3600)))
CHALLENGE_TTL_SECONDS = 10 * 60
CODE_TTL_SECONDS = 10 * 60
SESSION_TTL_SECONDS = int(os.environ.get("OAUTH_BROKER_SESSION_TTL_SECONDS", str(7 * 24 * 3600)))

# Background sweep of expired store entries
SWEEP_INTERVAL_SECONDS = float(os.environ.get("OAUTH_BROKER_SWEEP_INTERVAL_SECONDS", "60"))

# bcrypt work factor for client secret hashes (4 is the bcrypt minimum; tests use it)
BCRYPT_ROUNDS = int(os.environ.get("OAUTH_BROKER_BCRYPT_ROUNDS", "12"))

# Fernet key protecting upstream tokens in the session store. Unset: a key is generated per process.
TOKEN_ENCRYPTION_KEY = os.environ.get("OAUTH_BROKER_TOKEN_KEY", "").strip() or None

# SQLite audit database (broker state itself is in memory)
DATABASE_URL = os.environ.get("OAUTH_BROKER_DATABASE_URL", "sqlite:///./oauth_broker.db")

# Rate limiting: per-IP, per minute
RATE_LIMIT_AUTHORIZE_PER_MINUTE = int(os.environ.get("OAUTH_BROKER_RATE_LIMIT_AUTHORIZE_PER_MINUTE", "30"))
RATE_LIMIT_REGISTER_PER_MINUTE = int(os.environ.get("OAUTH_BROKER_RATE_LIMIT_REGISTER_PER_MINUTE", "10"))
RATE_LIMIT_TOKEN_PER_MINUTE = int(os.environ.get("OAUTH_BROKER_RATE_LIMIT_TOKEN_PER_MINUTE", "60"))

# GET /audit is off unless explicitly enabled
AUDIT_ENDPOINT_ENABLED = os.environ.get("OAUTH_BROKER_AUDIT_ENDPOINT", "").lower() in ("1", "true", "yes")

# Browser-based MCP clients call /register and /token cross-origin; comma-separated, "*" for any
CORS_ALLOW_ORIGINS = [o.strip() for o in os.environ.get("OAUTH_BROKER_CORS_ORIGINS", "*").split(",") if o.strip()]

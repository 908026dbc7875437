"""
Discovery documents: authorization server metadata (RFC 8414) and protected resource metadata (RFC 9728).
"""
from fastapi import APIRouter

from oauth_broker.config import BASE_URL, RESOURCE_PATH, RESOURCE_URI, UPSTREAM_SCOPES

router = APIRouter()

PROTECTED_RESOURCE_METADATA_URL = f"{BASE_URL}/.well-known/oauth-protected-resource"


def authorization_server_metadata() -> dict:
    return {
        "issuer": BASE_URL,
        "authorization_endpoint": f"{BASE_URL}/authorize",
        "token_endpoint": f"{BASE_URL}/token",
        "registration_endpoint": f"{BASE_URL}/register",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic"],
        "scopes_supported": list(UPSTREAM_SCOPES),
    }


def protected_resource_metadata() -> dict:
    return {
        "resource": RESOURCE_URI,
        "authorization_servers": [BASE_URL],
        "scopes_supported": list(UPSTREAM_SCOPES),
        "bearer_methods_supported": ["header"],
    }


@router.get("/.well-known/oauth-authorization-server")
def oauth_authorization_server():
    """Authorization server metadata."""
    return authorization_server_metadata()


@router.get("/.well-known/oauth-protected-resource")
@router.get(f"/.well-known/oauth-protected-resource{RESOURCE_PATH}")
def oauth_protected_resource():
    """Protected resource metadata; also served at the path-suffixed location for the resource."""
    return protected_resource_metadata()

"""
Relying-party credential extraction for the token endpoint (RFC 6749 §2.3.1).
client_secret_post (body) or client_secret_basic (Authorization: Basic base64(client_id:client_secret)).
"""
import base64
import binascii
from urllib.parse import unquote

from fastapi import Request


def parse_basic(header_value: str | None) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    encoded = header_value.strip()[6:].strip()
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64
    return unquote(client_id.strip()), unquote(client_secret)


def client_credentials(request: Request, params: dict) -> tuple[str | None, str | None]:
    """(client_id, client_secret) from the request body, falling back to HTTP Basic."""
    client_id = params.get("client_id")
    client_secret = params.get("client_secret")
    if client_id and client_secret is not None:
        return client_id.strip(), client_secret
    basic = parse_basic(request.headers.get("Authorization"))
    if basic:
        return basic
    if client_id:
        return client_id.strip(), client_secret
    return None, None

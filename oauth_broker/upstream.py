"""
Client side of the double hop: the broker as a confidential OAuth client of the upstream IdP.
Builds the upstream authorize URL and calls the upstream token endpoint
(authorization_code and refresh_token grants).
"""
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from oauth_broker.errors import UpstreamError, UpstreamUnavailable

logger = logging.getLogger(__name__)


class UpstreamRejected(UpstreamError):
    """Upstream token endpoint answered 4xx (bad or expired code, revoked refresh token)."""


@dataclass(frozen=True)
class UpstreamTokens:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str = "Bearer"


def _parse_token_response(data) -> UpstreamTokens:
    if not isinstance(data, dict) or not data.get("access_token"):
        raise UpstreamError("Upstream token response did not include an access_token")
    for field in ("access_token", "refresh_token", "scope", "token_type"):
        if data.get(field) is not None and not isinstance(data[field], str):
            raise UpstreamError(f"Upstream token response has a non-string {field}")
    expires_in = data.get("expires_in")
    try:
        expires_in = int(expires_in) if expires_in is not None else None
    except (TypeError, ValueError):
        expires_in = None
    return UpstreamTokens(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or None,
        expires_in=expires_in,
        scope=data.get("scope") or None,
        token_type=data.get("token_type") or "Bearer",
    )


class UpstreamIdP:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        token_url: str,
        scopes: list[str],
        authorize_params: dict[str, str] | None = None,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.scopes = list(scopes)
        self._authorize_params = dict(authorize_params or {})
        self._timeout = timeout

    def authorization_url(self, *, redirect_uri: str, state: str) -> str:
        """Upstream consent URL. redirect_uri is always the broker's own callback."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            **self._authorize_params,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> UpstreamTokens:
        """authorization_code grant; redirect_uri must equal the one used in authorization_url."""
        return self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )

    def refresh(self, refresh_token: str) -> UpstreamTokens:
        return self._post_token({"grant_type": "refresh_token", "refresh_token": refresh_token})

    def _post_token(self, data: dict[str, str]) -> UpstreamTokens:
        grant_type = data["grant_type"]
        try:
            r = httpx.post(
                self.token_url,
                data={**data, "client_id": self.client_id, "client_secret": self._client_secret},
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            logger.warning("Upstream %s request timed out after %ss", grant_type, self._timeout)
            raise UpstreamUnavailable("Upstream token endpoint timed out")
        except httpx.HTTPError as e:
            logger.warning("Upstream %s request failed: %s", grant_type, e.__class__.__name__)
            raise UpstreamUnavailable("Could not reach upstream token endpoint")

        if r.status_code >= 500:
            logger.warning("Upstream %s returned %s", grant_type, r.status_code)
            raise UpstreamUnavailable(f"Upstream token endpoint returned {r.status_code}")
        try:
            body = r.json()
        except ValueError:
            body = None
        if r.status_code != 200:
            upstream_error = body.get("error") if isinstance(body, dict) else None
            logger.info("Upstream %s rejected: status=%s error=%s", grant_type, r.status_code, upstream_error)
            raise UpstreamRejected(f"Upstream rejected {grant_type}: {upstream_error or r.status_code}")
        return _parse_token_response(body)

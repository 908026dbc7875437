"""
OAuth error taxonomy. Each error renders as {"error", "error_description"} JSON
with the class status code (see main.oauth_error_handler).
"""


class OAuthError(Exception):
    error = "server_error"
    status_code = 400
    default_description = "Request failed"

    def __init__(
        self,
        description: str | None = None,
        *,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.description = description or self.default_description
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers
        super().__init__(f"{self.error}: {self.description}")

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


class InvalidRequest(OAuthError):
    error = "invalid_request"
    default_description = "Malformed or missing parameters"


class InvalidClient(OAuthError):
    error = "invalid_client"
    default_description = "Client authentication failed"


class InvalidRedirectUri(OAuthError):
    error = "invalid_redirect_uri"
    default_description = "redirect_uri is not registered for this client"


class InvalidGrant(OAuthError):
    error = "invalid_grant"
    default_description = "Invalid or expired authorization code"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"
    default_description = "Only authorization_code is supported"


class UnsupportedResponseType(OAuthError):
    error = "unsupported_response_type"
    default_description = "response_type must be 'code'"


class UnsupportedCodeChallengeMethod(OAuthError):
    error = "unsupported_code_challenge_method"
    default_description = "code_challenge_method must be S256"


class InvalidTarget(OAuthError):
    error = "invalid_target"
    default_description = "Unknown resource indicator"


class Unauthorized(OAuthError):
    """Bearer token does not resolve to usable upstream credentials (RFC 6750 invalid_token)."""

    error = "invalid_token"
    status_code = 401
    default_description = "Invalid or expired access token"


class UpstreamError(OAuthError):
    """The upstream IdP reported an error, rejected an exchange, or returned an unusable response."""

    error = "upstream_error"
    status_code = 500
    default_description = "Upstream authorization failed"


class UpstreamUnavailable(UpstreamError):
    """Timeout, transport failure or 5xx from the upstream IdP. Retryable."""

    status_code = 503
    default_description = "Upstream identity provider unavailable; retry later"

    def __init__(self, description: str | None = None, *, retry_after: int = 5):
        super().__init__(description, headers={"Retry-After": str(retry_after)})


class RateLimited(OAuthError):
    error = "temporarily_unavailable"
    status_code = 429
    default_description = "Too many requests"

    def __init__(self, retry_after: int):
        super().__init__(headers={"Retry-After": str(retry_after)})

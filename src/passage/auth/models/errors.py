"""Exception hierarchy for OAuth 2.0 authentication errors.

Every error carries a machine-readable ``error_code``, a human-readable
``error_description`` and, when a provider answered, the ``http_status``.
Flow and refresh operations return these instances as values
(``TokenResponse | OAuth2Error``) instead of raising them, so callers can
branch on the type to decide whether to retry, back off, or re-prompt.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 related errors."""

    default_code = "oauth2_error"

    def __init__(
        self,
        error_description: str,
        error_code: str | None = None,
        http_status: int | None = None,
    ):
        super().__init__(error_description)
        self.error_code = error_code or self.default_code
        self.error_description = error_description
        self.http_status = http_status

    def __str__(self) -> str:
        if self.http_status is not None:
            return f"{self.error_code} ({self.http_status}): {self.error_description}"
        return f"{self.error_code}: {self.error_description}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code!r}, "
            f"error_description={self.error_description!r}, "
            f"http_status={self.http_status!r})"
        )


class ConfigurationError(OAuth2Error):
    """Raised at startup when provider configuration is missing or invalid."""

    default_code = "invalid_configuration"


class ValidationError(OAuth2Error):
    """Required input is missing or blank. No network call was made."""

    default_code = "invalid_request"


class StateValidationError(ValidationError):
    """OAuth state parameter is missing or does not match.

    Either the authorization server misbehaved or the callback was forged.
    """

    default_code = "state_mismatch"


class TransportError(OAuth2Error):
    """The provider could not be reached (timeout, connection, TLS)."""

    default_code = "connection_error"


class TokenEndpointError(OAuth2Error):
    """The token endpoint rejected the request or answered with garbage.

    Typical codes are ``invalid_grant``, ``invalid_client`` and
    ``unsupported_grant_type`` (RFC 6749 Section 5.2).
    """

    default_code = "invalid_response"


class AuthorizationDeniedError(OAuth2Error):
    """The authorization endpoint redirected back with an error."""

    default_code = "access_denied"


class SigningError(OAuth2Error):
    """Building or signing a JWT assertion failed."""

    default_code = "signing_failed"


class InvalidClaimsError(SigningError):
    """Assertion claims are blank or out of range."""

    default_code = "invalid_claims"


class ReauthenticationRequired(OAuth2Error):
    """No usable refresh path. The caller must restart a grant flow."""

    default_code = "reauthentication_required"


class CalloutError(OAuth2Error):
    """A downstream resource API call returned a non-success status."""

    default_code = "callout_failed"

    def __init__(
        self,
        error_description: str,
        error_code: str | None = None,
        http_status: int | None = None,
        body: str = "",
    ):
        super().__init__(error_description, error_code, http_status)
        self.body = body

"""Token endpoint request and response models.

Requests are immutable dataclasses that know their form encoding. The
response is a frozen pydantic model: a refresh produces a new instance,
never an in-place edit.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from passage.auth.models.credentials import (
    AUTHORIZATION_CODE_GRANT,
    CLIENT_CREDENTIALS_GRANT,
    JWT_BEARER_GRANT,
    PASSWORD_GRANT,
    REFRESH_TOKEN_GRANT,
)
from passage.auth.models.errors import OAuth2Error


def _client_auth(client_id: str, client_secret: str | None) -> dict[str, str]:
    # client_secret_post; public clients send only their id
    data = {"client_id": client_id}
    if client_secret:
        data["client_secret"] = client_secret
    return data


@dataclass(frozen=True)
class PasswordTokenRequest:
    """Resource owner password credentials grant (RFC 6749 Section 4.3.2)."""

    token_endpoint: str
    client_id: str
    client_secret: str = field(repr=False)
    username: str
    password: str = field(repr=False)
    grant_type: str = PASSWORD_GRANT

    def to_form_data(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            **_client_auth(self.client_id, self.client_secret),
            "username": self.username,
            "password": self.password,
        }


@dataclass(frozen=True)
class ClientCredentialsTokenRequest:
    """Client credentials grant (RFC 6749 Section 4.4.2)."""

    token_endpoint: str
    client_id: str
    client_secret: str = field(repr=False)
    scope: str | None = None
    grant_type: str = CLIENT_CREDENTIALS_GRANT

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            **_client_auth(self.client_id, self.client_secret),
        }
        if self.scope:
            data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class JWTBearerTokenRequest:
    """JWT bearer assertion grant (RFC 7523 Section 2.1)."""

    token_endpoint: str
    assertion: str = field(repr=False)
    grant_type: str = JWT_BEARER_GRANT

    def to_form_data(self) -> dict[str, str]:
        return {"grant_type": self.grant_type, "assertion": self.assertion}


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange (RFC 6749 Section 4.1.3).

    ``client_secret`` is omitted for public clients and ``code_verifier``
    is sent only when PKCE was used (RFC 7636).
    """

    # Required fields first
    token_endpoint: str
    code: str = field(repr=False)
    redirect_uri: str
    client_id: str

    # Optional fields with defaults last
    client_secret: str | None = field(default=None, repr=False)
    code_verifier: str | None = field(default=None, repr=False)
    grant_type: str = AUTHORIZATION_CODE_GRANT

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Token requests must use form encoding, not JSON (RFC 6749 Section 4.1.3).
        """
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            **_client_auth(self.client_id, self.client_secret),
        }

        if self.code_verifier:
            data["code_verifier"] = self.code_verifier

        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token request parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str = field(repr=False)
    client_id: str
    client_secret: str | None = field(default=None, repr=False)
    grant_type: str = REFRESH_TOKEN_GRANT

    def to_form_data(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            **_client_auth(self.client_id, self.client_secret),
        }


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 Section 5.1).

    Provider-specific fields (``id``, ``signature`` and friends) are kept as
    extra attributes. ``issued_at`` is stamped locally when the response is
    received, in seconds since the epoch.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry, None if not reported
    refresh_token: str | None = None
    scope: str | None = None

    # Root URL for subsequent API calls, name varies by provider
    instance_url: str | None = None
    base_url: str | None = None

    issued_at: float = 0.0

    @property
    def expires_at(self) -> float | None:
        """Absolute expiry timestamp, or None if the provider reported none."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    @property
    def api_base_url(self) -> str | None:
        return self.instance_url or self.base_url

    def is_expired(self, now: float | None = None, margin: float = 0.0) -> bool:
        """Check whether the token is expired, or will be within ``margin``."""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        if now is None:
            now = time.time()
        return now >= expires_at - margin

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def __repr__(self) -> str:
        return (
            f"TokenResponse(token_type={self.token_type!r}, "
            f"expires_at={self.expires_at!r}, "
            f"has_refresh_token={self.can_refresh()}, "
            f"api_base_url={self.api_base_url!r})"
        )


AuthResult = TokenResponse | OAuth2Error

"""Authorization redirect models.

Contains the outbound authorization request and the parsed callback.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlencode

from passage.auth.models.security import PKCEParameters


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters (RFC 6749 Section 4.1.1)."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    state: str
    scope: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
        }

        if self.scope:
            params["scope"] = self.scope
        if self.code_challenge:
            params["code_challenge"] = self.code_challenge
            params["code_challenge_method"] = self.code_challenge_method or "S256"

        separator = "&" if "?" in self.authorization_endpoint else "?"
        return f"{self.authorization_endpoint}{separator}{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationAttempt:
    """Everything the caller must keep until the provider redirects back."""

    url: str
    state: str
    pkce: PKCEParameters | None = field(default=None, repr=False)

    @property
    def code_verifier(self) -> str | None:
        return self.pkce.code_verifier if self.pkce else None


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = field(default=None, repr=False)
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

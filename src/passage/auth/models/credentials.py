"""Flow-specific credential inputs.

A closed set of variants. Each carries only the fields its grant needs and
the ``Authenticator`` picks the flow from the variant's type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

PASSWORD_GRANT = "password"
CLIENT_CREDENTIALS_GRANT = "client_credentials"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
AUTHORIZATION_CODE_GRANT = "authorization_code"
REFRESH_TOKEN_GRANT = "refresh_token"


@dataclass(frozen=True)
class PasswordCredentials:
    """Resource-owner username and password."""

    grant_type: ClassVar[str] = PASSWORD_GRANT

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class ClientCredentialsGrant:
    """No user context. The client's own id and secret are the credentials."""

    grant_type: ClassVar[str] = CLIENT_CREDENTIALS_GRANT


@dataclass(frozen=True)
class JWTBearerCredentials:
    """Subject to impersonate plus a reference to the signing key.

    ``signing_key_ref`` is an opaque alias resolved by a ``KeyResolver``;
    raw key material never lives here.
    """

    grant_type: ClassVar[str] = JWT_BEARER_GRANT

    subject: str
    signing_key_ref: str
    ttl_seconds: int = 180


@dataclass(frozen=True)
class AuthorizationCodeCredentials:
    """Code returned on the redirect, plus the PKCE verifier if one was used."""

    grant_type: ClassVar[str] = AUTHORIZATION_CODE_GRANT

    code: str = field(repr=False)
    code_verifier: str | None = field(default=None, repr=False)


Credentials = (
    PasswordCredentials
    | ClientCredentialsGrant
    | JWTBearerCredentials
    | AuthorizationCodeCredentials
)

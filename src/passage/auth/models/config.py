"""Provider configuration for OAuth 2.0 flows."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse

from passage.auth.models.errors import ConfigurationError

DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class FlowConfig:
    """Immutable client and endpoint configuration for one provider.

    One instance per provider/environment. Pass it explicitly to flows and
    the lifecycle manager so several providers can coexist in one process.
    """

    client_id: str
    token_endpoint_url: str
    client_secret: str | None = None  # None for PKCE public clients
    authorization_endpoint_url: str | None = None
    redirect_url: str | None = None
    scope: str | None = None
    assertion_audience: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if not self.client_id or not self.client_id.strip():
            raise ConfigurationError("client_id is required")
        _require_http_url("token_endpoint_url", self.token_endpoint_url)
        if self.authorization_endpoint_url is not None:
            _require_http_url(
                "authorization_endpoint_url", self.authorization_endpoint_url
            )
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

    @property
    def is_public_client(self) -> bool:
        return not self.client_secret

    @property
    def audience(self) -> str:
        """Audience for JWT assertions.

        Providers conventionally expect their issuer identity, which is the
        scheme and host of the token endpoint unless configured otherwise.
        """
        if self.assertion_audience:
            return self.assertion_audience
        parsed = urlparse(self.token_endpoint_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @classmethod
    def from_env(cls, prefix: str = "OAUTH_") -> FlowConfig:
        """Build a config from environment variables.

        Reads ``<prefix>CLIENT_ID``, ``<prefix>CLIENT_SECRET``,
        ``<prefix>TOKEN_URL``, ``<prefix>AUTHORIZE_URL``,
        ``<prefix>REDIRECT_URL``, ``<prefix>SCOPE``, ``<prefix>AUDIENCE``
        and ``<prefix>TIMEOUT``.

        Raises:
            ConfigurationError: If a required variable is missing
        """
        client_id = os.getenv(f"{prefix}CLIENT_ID")
        token_url = os.getenv(f"{prefix}TOKEN_URL")
        missing = [
            name
            for name, value in (
                (f"{prefix}CLIENT_ID", client_id),
                (f"{prefix}TOKEN_URL", token_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing environment variables: {', '.join(missing)}"
            )

        timeout = os.getenv(f"{prefix}TIMEOUT")
        try:
            timeout_value = float(timeout) if timeout else DEFAULT_TIMEOUT
        except ValueError as e:
            raise ConfigurationError(f"{prefix}TIMEOUT must be a number") from e

        return cls(
            client_id=client_id,
            client_secret=os.getenv(f"{prefix}CLIENT_SECRET") or None,
            token_endpoint_url=token_url,
            authorization_endpoint_url=os.getenv(f"{prefix}AUTHORIZE_URL") or None,
            redirect_url=os.getenv(f"{prefix}REDIRECT_URL") or None,
            scope=os.getenv(f"{prefix}SCOPE") or None,
            assertion_audience=os.getenv(f"{prefix}AUDIENCE") or None,
            timeout=timeout_value,
        )


def _require_http_url(name: str, value: str | None) -> None:
    if not value or not value.startswith(("http://", "https://")):
        raise ConfigurationError(f"{name} must be an http(s) URL, got {value!r}")

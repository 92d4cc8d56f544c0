"""OAuth 2.0 grant flow controllers.

Each controller turns a ``FlowConfig`` plus its credentials variant into a
token endpoint request and hands it to the ``TokenRequestExecutor``. All of
them answer with ``TokenResponse | OAuth2Error`` so downstream code never
branches on the grant type. Missing input is reported as a
``ValidationError`` before any network call.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import parse_qs, urlparse

from passage.auth.models.config import FlowConfig
from passage.auth.models.credentials import (
    AuthorizationCodeCredentials,
    ClientCredentialsGrant,
    Credentials,
    JWTBearerCredentials,
    PasswordCredentials,
)
from passage.auth.models.errors import (
    AuthorizationDeniedError,
    ConfigurationError,
    OAuth2Error,
    SigningError,
    StateValidationError,
    ValidationError,
)
from passage.auth.models.flow import (
    AuthorizationAttempt,
    AuthorizationRequest,
    AuthorizationResponse,
)
from passage.auth.models.tokens import (
    AuthResult,
    ClientCredentialsTokenRequest,
    JWTBearerTokenRequest,
    PasswordTokenRequest,
    TokenRequest,
)
from passage.auth.primitives.assertion import AssertionSigner
from passage.auth.primitives.pkce import PKCEManager
from passage.auth.primitives.security import generate_state, validate_state
from passage.auth.services.tokens import TokenRequestExecutor

logger = logging.getLogger(__name__)


def _blank_fields(**fields: str | None) -> list[str]:
    return [name for name, value in fields.items() if not value or not value.strip()]


def _missing_input(flow: str, fields: list[str]) -> ValidationError:
    return ValidationError(f"{flow} flow is missing required input: {', '.join(fields)}")


class FlowController(Protocol):
    async def authenticate(self, config: FlowConfig, credentials: Any) -> AuthResult:
        ...


class PasswordFlow:
    """Resource owner password credentials grant."""

    def __init__(self, executor: TokenRequestExecutor):
        self._executor = executor

    async def authenticate(
        self, config: FlowConfig, credentials: PasswordCredentials
    ) -> AuthResult:
        missing = _blank_fields(
            client_secret=config.client_secret,
            username=credentials.username,
            password=credentials.password,
        )
        if missing:
            return _missing_input("password", missing)

        logger.debug(f"Starting password flow for client {config.client_id}")
        return await self._executor.send(
            PasswordTokenRequest(
                token_endpoint=config.token_endpoint_url,
                client_id=config.client_id,
                client_secret=config.client_secret,
                username=credentials.username,
                password=credentials.password,
            )
        )


class ClientCredentialsFlow:
    """Client credentials grant. The token carries app-level scope only."""

    def __init__(self, executor: TokenRequestExecutor):
        self._executor = executor

    async def authenticate(
        self, config: FlowConfig, credentials: ClientCredentialsGrant | None = None
    ) -> AuthResult:
        missing = _blank_fields(client_secret=config.client_secret)
        if missing:
            return _missing_input("client_credentials", missing)

        logger.debug(f"Starting client credentials flow for client {config.client_id}")
        return await self._executor.send(
            ClientCredentialsTokenRequest(
                token_endpoint=config.token_endpoint_url,
                client_id=config.client_id,
                client_secret=config.client_secret,
                scope=config.scope,
            )
        )


class JWTBearerFlow:
    """JWT bearer assertion grant.

    A fresh assertion is signed for every call; assertions are short-lived
    and never reused.
    """

    def __init__(
        self, executor: TokenRequestExecutor, signer: AssertionSigner | None = None
    ):
        self._executor = executor
        self._signer = signer

    async def authenticate(
        self, config: FlowConfig, credentials: JWTBearerCredentials
    ) -> AuthResult:
        if self._signer is None:
            return ConfigurationError("JWT bearer flow requires an AssertionSigner")

        try:
            assertion = self._signer.build_assertion(
                subject=credentials.subject,
                audience=config.audience,
                issuer=config.client_id,
                signing_key_ref=credentials.signing_key_ref,
                ttl_seconds=credentials.ttl_seconds,
            )
        except SigningError as e:
            logger.warning(f"Could not build JWT assertion: {e}")
            return e

        logger.debug(f"Starting JWT bearer flow for client {config.client_id}")
        return await self._executor.send(
            JWTBearerTokenRequest(
                token_endpoint=config.token_endpoint_url, assertion=assertion
            )
        )


class AuthorizationCodeFlow:
    """Authorization code grant, with PKCE for public and confidential clients.

    Two steps around a browser redirect:
    1. ``generate_authorization_url`` - the caller keeps the returned
       ``AuthorizationAttempt`` (state and PKCE verifier)
    2. ``handle_callback`` + ``exchange_code_for_token`` once the provider
       redirects back
    """

    def __init__(
        self,
        executor: TokenRequestExecutor,
        pkce_manager: PKCEManager | None = None,
    ):
        self._executor = executor
        self._pkce_manager = pkce_manager or PKCEManager()

    def generate_authorization_url(
        self,
        config: FlowConfig,
        scope: str | None = None,
        state: str | None = None,
        use_pkce: bool = True,
    ) -> AuthorizationAttempt | OAuth2Error:
        """Build the URL the user agent must be sent to.

        Args:
            config: Provider configuration
            scope: Scope to request, defaults to ``config.scope``
            state: CSRF state, generated when not supplied
            use_pkce: Attach an S256 code challenge

        Returns:
            AuthorizationAttempt holding the URL, state and PKCE parameters
        """
        missing = _blank_fields(
            authorization_endpoint_url=config.authorization_endpoint_url,
            redirect_url=config.redirect_url,
        )
        if missing:
            return _missing_input("authorization_code", missing)
        if not use_pkce and config.is_public_client:
            return ValidationError("Public clients must use PKCE")
        if state is not None and not state.strip():
            return _missing_input("authorization_code", ["state"])

        state = state or generate_state()
        pkce = self._pkce_manager.generate_parameters() if use_pkce else None

        auth_request = AuthorizationRequest(
            authorization_endpoint=config.authorization_endpoint_url,
            client_id=config.client_id,
            redirect_uri=config.redirect_url,
            state=state,
            scope=scope or config.scope,
            code_challenge=pkce.code_challenge if pkce else None,
            code_challenge_method=pkce.code_challenge_method if pkce else None,
        )

        logger.info(
            f"Generated authorization URL for client {config.client_id} "
            f"(pkce={'yes' if pkce else 'no'})"
        )
        return AuthorizationAttempt(
            url=auth_request.build_authorization_url(), state=state, pkce=pkce
        )

    def handle_callback(
        self, callback_url: str, expected_state: str
    ) -> AuthorizationResponse | OAuth2Error:
        """Parse the redirect back from the provider and verify its state.

        Returns:
            AuthorizationResponse carrying the code;
            StateValidationError if the state is missing or mismatched;
            AuthorizationDeniedError if the provider reported an error;
            ValidationError if neither code nor error came back
        """
        auth_response = self._parse_callback_url(callback_url)

        try:
            validate_state(expected_state, auth_response.state)
        except StateValidationError as e:
            logger.warning(f"Rejected authorization callback: {e.error_description}")
            return e

        if auth_response.is_error():
            logger.warning(
                f"Authorization callback contained error: {auth_response.error} - "
                f"{auth_response.error_description}"
            )
            description = auth_response.error_description or "Authorization denied"
            if auth_response.error_uri:
                description = f"{description} (see {auth_response.error_uri})"
            return AuthorizationDeniedError(description, auth_response.error)

        if not auth_response.is_success():
            logger.warning("Authorization callback missing both code and error")
            return ValidationError("Authorization callback is missing the code")

        logger.info("Authorization callback successful - received authorization code")
        return auth_response

    async def exchange_code_for_token(
        self,
        config: FlowConfig,
        code: str,
        code_verifier: str | None = None,
    ) -> AuthResult:
        """Exchange an authorization code for tokens.

        ``client_secret`` is sent only by confidential clients and
        ``code_verifier`` only when PKCE was used.
        """
        missing = _blank_fields(code=code, redirect_url=config.redirect_url)
        if missing:
            return _missing_input("authorization_code", missing)
        if code_verifier is not None and not (43 <= len(code_verifier) <= 128):
            return ValidationError("code_verifier must be 43-128 characters")
        if config.is_public_client and not code_verifier:
            return ValidationError("Public clients must supply a PKCE code_verifier")

        logger.debug(f"Exchanging authorization code for client {config.client_id}")
        return await self._executor.send(
            TokenRequest(
                token_endpoint=config.token_endpoint_url,
                code=code,
                redirect_uri=config.redirect_url,
                client_id=config.client_id,
                client_secret=config.client_secret,
                code_verifier=code_verifier,
            )
        )

    async def authenticate(
        self, config: FlowConfig, credentials: AuthorizationCodeCredentials
    ) -> AuthResult:
        return await self.exchange_code_for_token(
            config, credentials.code, credentials.code_verifier
        )

    def _parse_callback_url(self, callback_url: str) -> AuthorizationResponse:
        query_params = parse_qs(urlparse(callback_url).query)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return AuthorizationResponse(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
            error_uri=get_single_param("error_uri"),
        )


class Authenticator:
    """Routes each credentials variant to its flow controller."""

    def __init__(
        self,
        executor: TokenRequestExecutor,
        signer: AssertionSigner | None = None,
        pkce_manager: PKCEManager | None = None,
    ):
        self.password = PasswordFlow(executor)
        self.client_credentials = ClientCredentialsFlow(executor)
        self.jwt_bearer = JWTBearerFlow(executor, signer)
        self.authorization_code = AuthorizationCodeFlow(executor, pkce_manager)

        self._controllers: dict[type, FlowController] = {
            PasswordCredentials: self.password,
            ClientCredentialsGrant: self.client_credentials,
            JWTBearerCredentials: self.jwt_bearer,
            AuthorizationCodeCredentials: self.authorization_code,
        }

    async def authenticate(
        self, config: FlowConfig, credentials: Credentials
    ) -> AuthResult:
        controller = self._controllers.get(type(credentials))
        if controller is None:
            return ValidationError(
                f"Unsupported credentials type {type(credentials).__name__}"
            )
        return await controller.authenticate(config, credentials)

"""OAuth 2.0 client orchestration for one configured provider.

Wires the executor, flow controllers and lifecycle manager together so a
host application can authenticate under a key and later ask for a valid
token under that same key.
"""

from __future__ import annotations

import logging
from typing import Hashable

from passage.auth.models.config import FlowConfig
from passage.auth.models.credentials import (
    AuthorizationCodeCredentials,
    Credentials,
)
from passage.auth.models.errors import OAuth2Error
from passage.auth.models.flow import AuthorizationAttempt, AuthorizationResponse
from passage.auth.models.tokens import AuthResult, TokenResponse
from passage.auth.primitives.assertion import AssertionSigner
from passage.auth.services.flows import Authenticator
from passage.auth.services.lifecycle import TokenLifecycleManager
from passage.auth.services.tokens import TokenRequestExecutor

logger = logging.getLogger(__name__)


class OAuth2Client:
    """Complete OAuth 2.0 client for one provider configuration.

    Every successful grant is cached under the caller's key, and
    ``get_valid_token`` serves it (refreshing as needed) from then on.
    """

    def __init__(
        self,
        config: FlowConfig,
        signer: AssertionSigner | None = None,
        executor: TokenRequestExecutor | None = None,
        lifecycle: TokenLifecycleManager | None = None,
    ):
        """Initialize OAuth client.

        Args:
            config: Provider configuration
            signer: Assertion signer, needed only for the JWT bearer flow
            executor: Token request executor, one is created from
                ``config.timeout`` when omitted
            lifecycle: Token cache, one is created around the executor when
                omitted
        """
        self.config = config
        self._owns_executor = executor is None
        self.executor = executor or TokenRequestExecutor(timeout=config.timeout)
        self.authenticator = Authenticator(self.executor, signer=signer)
        self.lifecycle = lifecycle or TokenLifecycleManager(self.executor)

    async def authenticate(
        self, key: Hashable, credentials: Credentials
    ) -> AuthResult:
        """Run the grant matching ``credentials`` and cache the token."""
        logger.info(f"Authenticating {key!r} with {credentials.grant_type} grant")

        result = await self.authenticator.authenticate(self.config, credentials)
        return await self._remember(key, result)

    def start_authorization(
        self,
        scope: str | None = None,
        state: str | None = None,
        use_pkce: bool = True,
    ) -> AuthorizationAttempt | OAuth2Error:
        """First half of the authorization code flow.

        The returned attempt must be kept by the caller (session, cookie)
        until the provider redirects back.
        """
        return self.authenticator.authorization_code.generate_authorization_url(
            self.config, scope=scope, state=state, use_pkce=use_pkce
        )

    async def complete_authorization(
        self, key: Hashable, attempt: AuthorizationAttempt, callback_url: str
    ) -> AuthResult:
        """Second half: verify the callback's state, exchange the code."""
        flow = self.authenticator.authorization_code
        callback = flow.handle_callback(callback_url, attempt.state)
        if not isinstance(callback, AuthorizationResponse):
            return callback

        credentials = AuthorizationCodeCredentials(
            code=callback.code, code_verifier=attempt.code_verifier
        )
        return await self.authenticate(key, credentials)

    async def get_valid_token(
        self, key: Hashable, rejected_token: str | None = None
    ) -> AuthResult:
        return await self.lifecycle.get_valid_token(key, rejected_token=rejected_token)

    async def logout(self, key: Hashable) -> bool:
        return await self.lifecycle.logout(key)

    async def close(self) -> None:
        """Close the executor if this client created it."""
        if self._owns_executor:
            await self.executor.close()

    async def __aenter__(self) -> OAuth2Client:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _remember(self, key: Hashable, result: AuthResult) -> AuthResult:
        if isinstance(result, TokenResponse):
            await self.lifecycle.store(key, self.config, result)
            logger.info(f"Authenticated {key!r}")
        else:
            logger.warning(f"Authentication for {key!r} failed: {result}")
        return result

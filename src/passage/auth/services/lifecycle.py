"""Token lifecycle: caching, expiry tracking and single-flight refresh.

Holds the latest ``TokenResponse`` per credential key. A token is handed out
only while it is outside the expiry safety margin; after that it is
refreshed (when a refresh token exists) or the caller is told to
re-authenticate. Concurrent callers for one key share a single in-flight
refresh and its outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Hashable

from passage.auth.models.config import FlowConfig
from passage.auth.models.errors import (
    ReauthenticationRequired,
    TokenEndpointError,
    TransportError,
)
from passage.auth.models.tokens import AuthResult, RefreshTokenRequest, TokenResponse
from passage.auth.services.tokens import TokenRequestExecutor

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MARGIN = 30.0


@dataclass(frozen=True)
class _CacheEntry:
    config: FlowConfig
    token: TokenResponse


class TokenLifecycleManager:
    """Per-key token cache with serialized refresh.

    All reads and writes of the cache and of the in-flight map happen under
    one ``asyncio.Lock``. A refresh runs as its own task so a waiter that
    is cancelled or times out does not abort it for the others, and the
    in-flight marker is dropped when that task finishes, whatever the
    outcome.
    """

    def __init__(
        self,
        executor: TokenRequestExecutor,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN,
        refresh_timeout: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the lifecycle manager.

        Args:
            executor: Executor used for refresh_token exchanges
            expiry_margin: Treat tokens as expired this many seconds early
            refresh_timeout: Upper bound for one refresh, on top of the
                executor's own request timeout
            clock: Source of "now", seconds since the epoch
        """
        if refresh_timeout is not None and refresh_timeout <= 0:
            raise ValueError("refresh_timeout must be positive")
        self._executor = executor
        self.expiry_margin = expiry_margin
        self.refresh_timeout = refresh_timeout
        self._clock = clock

        self._entries: dict[Hashable, _CacheEntry] = {}
        self._refreshes: dict[Hashable, asyncio.Task[AuthResult]] = {}
        self._lock = asyncio.Lock()

    async def store(
        self, key: Hashable, config: FlowConfig, token: TokenResponse
    ) -> None:
        """Cache a freshly issued token, replacing any previous one."""
        async with self._lock:
            self._entries[key] = _CacheEntry(config, token)
        logger.debug(f"Stored token for {key!r} (expires_at={token.expires_at})")

    def get_cached(self, key: Hashable) -> TokenResponse | None:
        """Return the cached token without any expiry check."""
        entry = self._entries.get(key)
        return entry.token if entry else None

    def refresh_in_flight(self, key: Hashable) -> bool:
        return key in self._refreshes

    async def logout(self, key: Hashable) -> bool:
        """Discard the token for ``key``.

        A refresh already in flight still completes for its waiters but its
        result is not cached.

        Returns:
            True if a token was cached
        """
        async with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info(f"Logged out {key!r}")
        return removed

    async def get_valid_token(
        self, key: Hashable, rejected_token: str | None = None
    ) -> AuthResult:
        """Return a token that is good for at least ``expiry_margin`` seconds.

        Args:
            key: Credential key the token was stored under
            rejected_token: Access token a resource server just refused.
                Forces a refresh if it is still the cached one.

        Returns:
            The cached or refreshed TokenResponse;
            ReauthenticationRequired if nothing usable is left;
            the refresh's TokenEndpointError or TransportError otherwise
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return ReauthenticationRequired(f"No token cached for {key!r}")

            token = entry.token
            rejected = rejected_token is not None and rejected_token == token.access_token
            if not rejected and not token.is_expired(self._clock(), self.expiry_margin):
                return token

            task = self._refreshes.get(key)
            if task is None:
                if not token.can_refresh():
                    del self._entries[key]
                    reason = "was rejected" if rejected else "expired"
                    logger.info(
                        f"Token for {key!r} {reason} and has no refresh token"
                    )
                    return ReauthenticationRequired(
                        f"Access token for {key!r} {reason} and cannot be refreshed"
                    )

                logger.debug(f"Starting token refresh for {key!r}")
                task = asyncio.create_task(self._refresh(key, entry))
                self._refreshes[key] = task
                task.add_done_callback(partial(self._clear_in_flight, key))
            else:
                logger.debug(f"Joining in-flight token refresh for {key!r}")

        return await asyncio.shield(task)

    def _clear_in_flight(self, key: Hashable, task: asyncio.Task[AuthResult]) -> None:
        if self._refreshes.get(key) is task:
            del self._refreshes[key]

    async def _refresh(self, key: Hashable, entry: _CacheEntry) -> AuthResult:
        request = RefreshTokenRequest(
            token_endpoint=entry.config.token_endpoint_url,
            refresh_token=entry.token.refresh_token,
            client_id=entry.config.client_id,
            client_secret=entry.config.client_secret,
        )

        try:
            if self.refresh_timeout is None:
                result = await self._executor.send(request)
            else:
                result = await asyncio.wait_for(
                    self._executor.send(request), self.refresh_timeout
                )
        except asyncio.TimeoutError:
            logger.error(
                f"Token refresh for {key!r} timed out after {self.refresh_timeout}s"
            )
            return TransportError(
                f"Token refresh timed out after {self.refresh_timeout}s",
                error_code="timeout",
            )

        reauth = None
        if isinstance(result, TokenEndpointError) and result.error_code == "invalid_grant":
            reauth = ReauthenticationRequired(
                f"Refresh token rejected: {result.error_description}",
                http_status=result.http_status,
            )
            reauth.__cause__ = result

        async with self._lock:
            if self._entries.get(key) is not entry:
                # Logged out or re-authenticated while the refresh ran
                return result if reauth is None else reauth

            if isinstance(result, TokenResponse):
                refreshed = self._carry_over(entry.token, result)
                self._entries[key] = _CacheEntry(entry.config, refreshed)
                logger.info(
                    f"Refreshed token for {key!r} "
                    f"(rotated={result.refresh_token is not None})"
                )
                return refreshed

            if reauth is not None:
                del self._entries[key]
                logger.warning(
                    f"Refresh token for {key!r} rejected, re-authentication required"
                )
                return reauth

        logger.warning(f"Token refresh for {key!r} failed: {result}")
        return result

    @staticmethod
    def _carry_over(previous: TokenResponse, refreshed: TokenResponse) -> TokenResponse:
        """Keep fields a non-rotating provider leaves out of refresh responses."""
        update = {}
        if refreshed.refresh_token is None:
            update["refresh_token"] = previous.refresh_token
        if refreshed.instance_url is None and previous.instance_url:
            update["instance_url"] = previous.instance_url
        if refreshed.base_url is None and previous.base_url:
            update["base_url"] = previous.base_url
        return refreshed.model_copy(update=update) if update else refreshed

"""Authenticated HTTP callouts against the resource API.

A thin consumer of issued tokens: it asks a token source for a valid token,
calls the resource API with ``Authorization: Bearer``, and on a 401 asks for
a fresh token instead of retrying with the stale one.
"""

from __future__ import annotations

import logging
from typing import Any, Hashable, Protocol

import httpx

from passage.auth.models.errors import (
    CalloutError,
    OAuth2Error,
    TransportError,
    ValidationError,
)
from passage.auth.models.tokens import AuthResult, TokenResponse

logger = logging.getLogger(__name__)


class TokenSource(Protocol):
    """Anything that hands out valid tokens per key.

    Satisfied by ``TokenLifecycleManager`` and ``OAuth2Client``.
    """

    async def get_valid_token(
        self, key: Hashable, rejected_token: str | None = None
    ) -> AuthResult: ...


class CalloutClient:
    """Makes authenticated GET/POST requests for one credential key.

    Relative paths are resolved against ``base_url`` or, when that is not
    set, against the instance/base URL returned with the token.
    """

    def __init__(
        self,
        token_source: TokenSource,
        key: Hashable,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self._token_source = token_source
        self.key = key
        self.base_url = base_url
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and return the decoded JSON body."""
        response = await self.request("GET", path, params=params)
        return self._decode(response)

    async def post(self, path: str, json: Any = None) -> Any:
        """POST ``json`` to ``path`` and return the decoded JSON body."""
        response = await self.request("POST", path, json=json)
        return self._decode(response)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send an authenticated request.

        Raises:
            OAuth2Error: If no valid token can be obtained (for example
                ReauthenticationRequired)
            TransportError: If the resource API could not be reached
            CalloutError: If the resource API answered with a non-2xx status
        """
        token = await self._acquire_token()
        response = await self._send(method, path, token, params, json, headers)

        if response.status_code == 401:
            logger.info(
                f"{method} {path} returned 401, requesting a fresh token for "
                f"{self.key!r}"
            )
            token = await self._acquire_token(rejected_token=token.access_token)
            response = await self._send(method, path, token, params, json, headers)

        if response.is_error:
            logger.warning(f"{method} {path} failed with {response.status_code}")
            raise CalloutError(
                f"{method} {path} failed: HTTP {response.status_code} "
                f"{response.reason_phrase}",
                error_code=f"http_{response.status_code}",
                http_status=response.status_code,
                body=response.text,
            )
        return response

    async def _acquire_token(self, rejected_token: str | None = None) -> TokenResponse:
        result = await self._token_source.get_valid_token(
            self.key, rejected_token=rejected_token
        )
        if isinstance(result, OAuth2Error):
            raise result
        return result

    async def _send(
        self,
        method: str,
        path: str,
        token: TokenResponse,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        url = self._resolve_url(path, token)
        request_headers = {
            "Accept": "application/json",
            **(headers or {}),
            "Authorization": f"Bearer {token.access_token}",
        }

        logger.debug(f"Callout {method} {url}")
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"{method} {url} timed out: {e}", error_code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    def _resolve_url(self, path: str, token: TokenResponse) -> str:
        if path.startswith(("http://", "https://")):
            return path
        base = self.base_url or token.api_base_url
        if not base:
            raise ValidationError(
                f"Cannot resolve {path!r}: no base URL configured or issued"
            )
        return f"{base.rstrip('/')}/{path.lstrip('/')}"

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> CalloutClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

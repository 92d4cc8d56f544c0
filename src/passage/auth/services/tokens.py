"""Token endpoint exchange service.

Performs the form-encoded POST every grant ends in and classifies the
outcome into a ``TokenResponse``, a ``TokenEndpointError`` (the provider
said no) or a ``TransportError`` (the provider could not be reached).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Protocol

import httpx
from pydantic import ValidationError as ModelValidationError

from passage.auth.models.config import DEFAULT_TIMEOUT
from passage.auth.models.errors import TokenEndpointError, TransportError
from passage.auth.models.tokens import AuthResult, TokenResponse

logger = logging.getLogger(__name__)

TOKEN_REQUEST_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class FormRequest(Protocol):
    token_endpoint: str

    def to_form_data(self) -> dict[str, str]: ...


class TokenRequestExecutor:
    """Sends token requests and parses the response/error envelope.

    Uses application/x-www-form-urlencoded encoding as required by
    RFC 6749. The HTTP client can be injected so tests control status codes
    and bodies without network access; a client passed in is not closed by
    ``close()``.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the executor.

        Args:
            timeout: Per-request timeout in seconds
            http_client: Optional client to use instead of a private one
            clock: Source of "now" for stamping ``issued_at``
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock

    async def send(self, request: FormRequest) -> AuthResult:
        """Execute one of the token request models."""
        return await self.exchange(request.token_endpoint, request.to_form_data())

    async def exchange(
        self, endpoint: str, form_params: Mapping[str, str]
    ) -> AuthResult:
        """POST ``form_params`` to ``endpoint`` and classify the response.

        Returns:
            TokenResponse on HTTP 200 with an ``access_token``;
            TokenEndpointError for any other answer;
            TransportError if the endpoint could not be reached in time
        """
        form_data = dict(form_params)
        grant_type = form_data.get("grant_type", "unknown")

        # Log request details (without sensitive data)
        logger.debug(f"Token request: grant_type={grant_type}, endpoint={endpoint}")

        try:
            response = await self._http_client.post(
                endpoint,
                data=form_data,
                headers=dict(TOKEN_REQUEST_HEADERS),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Token request to {endpoint} timed out after {self.timeout}s")
            return TransportError(
                f"Timed out after {self.timeout}s contacting {endpoint}: {e}",
                error_code="timeout",
            )
        except httpx.RequestError as e:
            logger.error(f"Token request to {endpoint} failed: {e!r}")
            return TransportError(
                f"Could not reach {endpoint}: {e}", error_code="connection_error"
            )

        return self._parse_token_response(response, grant_type)

    def _parse_token_response(
        self, response: httpx.Response, grant_type: str
    ) -> AuthResult:
        """Parse token endpoint response (RFC 6749 Sections 5.1 and 5.2)."""
        status = response.status_code
        body = self._json_body(response)

        if status == 200 and body is not None and body.get("access_token"):
            try:
                token = TokenResponse.model_validate(
                    {**body, "issued_at": self._clock()}
                )
            except ModelValidationError as e:
                logger.warning(f"Malformed {grant_type} token response: {e}")
                return TokenEndpointError(
                    f"Malformed token response: {e}", http_status=status
                )
            logger.info(f"Token exchange successful (grant_type={grant_type})")
            return token

        error_code, error_description = self._extract_error(response, body)
        logger.warning(
            f"Token exchange failed with {status}: {error_code} - {error_description}"
        )
        return TokenEndpointError(error_description, error_code, status)

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any] | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            # Some platforms wrap errors in a list of {errorCode, message}
            first = body[0]
            return {
                "error": first.get("errorCode") or first.get("error"),
                "error_description": first.get("message")
                or first.get("error_description"),
            }
        return body if isinstance(body, dict) else None

    @staticmethod
    def _extract_error(
        response: httpx.Response, body: dict[str, Any] | None
    ) -> tuple[str, str]:
        status = response.status_code
        status_line = f"HTTP {status} {response.reason_phrase}".rstrip()

        if body and body.get("error"):
            return str(body["error"]), str(body.get("error_description") or status_line)
        if status == 200:
            detail = (
                "missing required access_token"
                if body is not None
                else "body is not a JSON object"
            )
            return "invalid_response", f"Token response {detail}"
        return f"http_{status}", status_line

    async def close(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._owns_client:
            await self._http_client.aclose()

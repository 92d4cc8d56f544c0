"""Tests for the token endpoint exchange.

High-impact tests covering the exchange envelope:
- Successful responses and expiry stamping
- OAuth error responses and synthesized errors
- Form encoding and headers
- Transport failures kept distinct from provider errors
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from passage.auth.models.errors import TokenEndpointError, TransportError
from passage.auth.models.tokens import RefreshTokenRequest, TokenResponse
from passage.auth.services.tokens import TokenRequestExecutor

TOKEN_URL = "https://login.example.com/services/oauth2/token"
NOW = 1_700_000_000.0


class TestSuccessfulExchange:
    """Test successful token responses."""

    def setup_method(self):
        # Arrange
        self.http_client = AsyncMock()
        self.executor = TokenRequestExecutor(
            timeout=3.0, http_client=self.http_client, clock=lambda: NOW
        )

    async def test_successful_exchange_with_all_fields(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "access_token": "abc",
            "token_type": "Bearer",
            "expires_in": 7200,
            "refresh_token": "refresh-token-abc",
            "instance_url": "https://na1.example.com",
            "scope": "api refresh_token",
        }
        self.http_client.post.return_value = mock_response

        # Act
        result = await self.executor.exchange(
            TOKEN_URL, {"grant_type": "password", "username": "u", "password": "p"}
        )

        # Assert
        assert isinstance(result, TokenResponse)
        assert result.access_token == "abc"
        assert result.token_type == "Bearer"
        assert result.refresh_token == "refresh-token-abc"
        assert result.api_base_url == "https://na1.example.com"
        assert result.issued_at == NOW
        assert result.expires_at == NOW + 7200

        # Verify HTTP request was made correctly
        self.http_client.post.assert_awaited_once()
        call_args = self.http_client.post.call_args
        assert call_args[0][0] == TOKEN_URL
        assert call_args[1]["data"]["grant_type"] == "password"
        assert call_args[1]["timeout"] == 3.0

    async def test_form_encoding_headers(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"access_token": "token-xyz"}
        )

        # Act
        await self.executor.exchange(TOKEN_URL, {"grant_type": "client_credentials"})

        # Assert
        call_args = self.http_client.post.call_args
        headers = call_args[1]["headers"]

        # Must use form encoding, not JSON
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Accept"] == "application/json"
        assert "data" in call_args[1]
        assert "json" not in call_args[1]

    async def test_missing_expires_in_means_no_expiry(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"access_token": "token-xyz"}
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert result.expires_at is None
        assert not result.is_expired(now=NOW + 10**9)

    async def test_string_expires_in_is_coerced(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"access_token": "t", "expires_in": "3600"}
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert result.expires_in == 3600

    async def test_provider_specific_fields_are_kept(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200,
            json={
                "access_token": "t",
                "id": "https://login.example.com/id/00D/005",
                "signature": "sig",
                "issued_at": "1278448832702",
            },
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert result.model_extra["id"] == "https://login.example.com/id/00D/005"
        assert result.model_extra["signature"] == "sig"
        assert result.issued_at == NOW  # stamped locally

    async def test_send_uses_request_model(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"access_token": "new"}
        )
        request = RefreshTokenRequest(
            token_endpoint=TOKEN_URL,
            refresh_token="r1",
            client_id="client-456",
            client_secret="secret",
        )

        # Act
        await self.executor.send(request)

        # Assert
        form_data = self.http_client.post.call_args[1]["data"]
        assert form_data == {
            "grant_type": "refresh_token",
            "refresh_token": "r1",
            "client_id": "client-456",
            "client_secret": "secret",
        }


class TestProviderErrors:
    """Test classification of rejected requests."""

    def setup_method(self):
        # Arrange
        self.http_client = AsyncMock()
        self.executor = TokenRequestExecutor(http_client=self.http_client)

    async def test_invalid_grant_error(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "expired code"}
        )

        # Act
        result = await self.executor.exchange(
            TOKEN_URL, {"grant_type": "authorization_code"}
        )

        # Assert
        assert isinstance(result, TokenEndpointError)
        assert result.error_code == "invalid_grant"
        assert result.error_description == "expired code"
        assert result.http_status == 400

    async def test_invalid_client_error(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 401
        mock_response.json.return_value = {
            "error": "invalid_client",
            "error_description": "Client authentication failed",
        }
        self.http_client.post.return_value = mock_response

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TokenEndpointError)
        assert result.error_code == "invalid_client"
        assert result.http_status == 401

    async def test_success_status_without_access_token(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"token_type": "Bearer"}
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TokenEndpointError)
        assert result.error_code == "invalid_response"
        assert "missing required access_token" in result.error_description

    async def test_error_code_in_200_body_is_used(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"error": "unsupported_grant_type"}
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "x"})

        # Assert
        assert result.error_code == "unsupported_grant_type"

    async def test_non_json_error_is_synthesized_from_status_line(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            503, text="<html>maintenance</html>"
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TokenEndpointError)
        assert result.error_code == "http_503"
        assert result.error_description == "HTTP 503 Service Unavailable"
        assert result.http_status == 503

    async def test_error_without_description_uses_status_line(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            400, json={"error": "invalid_request"}
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert result.error_code == "invalid_request"
        assert result.error_description == "HTTP 400 Bad Request"

    async def test_list_shaped_error_body(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            400,
            json=[{"errorCode": "INVALID_AUTH_HEADER", "message": "bad header"}],
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert result.error_code == "INVALID_AUTH_HEADER"
        assert result.error_description == "bad header"

    async def test_malformed_success_body(self):
        # Arrange
        self.http_client.post.return_value = httpx.Response(
            200, json={"access_token": "t", "expires_in": "soon"}
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TokenEndpointError)
        assert result.error_code == "invalid_response"


class TestTransportErrors:
    """Network failures are TransportError, never TokenEndpointError."""

    def setup_method(self):
        # Arrange
        self.http_client = AsyncMock()
        self.executor = TokenRequestExecutor(http_client=self.http_client)

    async def test_connection_refused(self):
        # Arrange
        self.http_client.post.side_effect = httpx.ConnectError("Connection refused")

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TransportError)
        assert not isinstance(result, TokenEndpointError)
        assert result.error_code == "connection_error"
        assert result.http_status is None

    async def test_timeout(self):
        # Arrange
        self.http_client.post.side_effect = httpx.ReadTimeout("too slow")

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TransportError)
        assert result.error_code == "timeout"

    async def test_tls_failure(self):
        # Arrange
        self.http_client.post.side_effect = httpx.ConnectError(
            "[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed"
        )

        # Act
        result = await self.executor.exchange(TOKEN_URL, {"grant_type": "password"})

        # Assert
        assert isinstance(result, TransportError)
        assert "CERTIFICATE_VERIFY_FAILED" in result.error_description


class TestLifecycle:
    async def test_close_only_closes_owned_client(self):
        # Arrange
        injected = AsyncMock()
        executor = TokenRequestExecutor(http_client=injected)
        owned = TokenRequestExecutor()

        # Act
        await executor.close()
        await owned.close()

        # Assert
        injected.aclose.assert_not_awaited()
        assert owned._http_client.is_closed

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            TokenRequestExecutor(timeout=0)

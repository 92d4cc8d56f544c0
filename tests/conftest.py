import asyncio
from typing import Awaitable, Callable
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from passage.auth.models.config import FlowConfig

Handler = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


class FakeClock:
    """Manually advanced clock, seconds since the epoch."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubEndpoint:
    """Programmable HTTP endpoint served through httpx.MockTransport.

    Records every request so tests can count network calls and inspect
    the form bodies that were sent.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.delay = 0.0
        self.gate: asyncio.Event | None = None
        self._handler: Handler = lambda request: httpx.Response(
            500, json={"error": "server_error"}
        )

    def respond_with(self, status: int, body: dict | list | None = None) -> None:
        self._handler = lambda request: httpx.Response(status, json=body)

    def respond_sequence(self, *responses: tuple[int, dict]) -> None:
        queue = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            status, body = queue.pop(0) if len(queue) > 1 else queue[0]
            return httpx.Response(status, json=body)

        self._handler = handler

    def handle_with(self, handler: Handler) -> None:
        self._handler = handler

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict[str, str]:
        parsed = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in parsed.items()}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self._handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub() -> StubEndpoint:
    return StubEndpoint()


@pytest.fixture
def config() -> FlowConfig:
    return FlowConfig(
        client_id="client-456",
        client_secret="secret-789",
        token_endpoint_url="https://login.example.com/services/oauth2/token",
        authorization_endpoint_url="https://login.example.com/services/oauth2/authorize",
        redirect_url="https://myapp.com/callback",
        scope="api refresh_token",
    )


@pytest.fixture
def public_config() -> FlowConfig:
    return FlowConfig(
        client_id="public-client",
        token_endpoint_url="https://login.example.com/services/oauth2/token",
        authorization_endpoint_url="https://login.example.com/services/oauth2/authorize",
        redirect_url="http://localhost:8080/callback",
    )


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)

"""
Shared fixtures for trips-web tests.

Upstream services (identity provider, identity API, trips API, device data
API, token exchange) are faked with httpx.MockTransport; the JWKS endpoint is
faked by patching requests.get in trips_web.auth_utils. JWTs are real RS256
tokens signed with a key generated per test session.
"""
from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from jose import jwk, jwt

from trips_web.config import Settings

AUTH_URL = "https://auth.test/auth/web3/generate_challenge"
SUBMIT_URL = "https://auth.test/auth/web3/submit_challenge"
JWKS_URL = "https://auth.test/keys"
IDENTITY_URL = "https://identity.test/query"
TRIPS_BASE = "https://trips.test/v1"
DEVICE_DATA_BASE = "https://device-data.test/v1"
EXCHANGE_URL = "https://exchange.test/v1/tokens/exchange"

KID = "test-key-1"


# ---------------------------------------------------------------------------
# Fake upstream services
# ---------------------------------------------------------------------------

Responder = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Routes (method, url-without-query) to responders and records every request."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Responder] = {}
        self.calls: List[httpx.Request] = []

    def add(self, method: str, url: str, responder: Responder) -> None:
        self.routes[(method, url)] = responder

    def add_json(self, method: str, url: str, payload: Any, status_code: int = 200) -> None:
        self.add(method, url, lambda request: httpx.Response(status_code, json=payload))

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [call for call in self.calls if str(call.url).split("?")[0] == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        responder = self.routes.get((request.method, str(request.url).split("?")[0]))
        if responder is None:
            return httpx.Response(404, json={"error": "no fake route"})
        return responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        CLIENT_ID="client-123",
        DOMAIN="http://localhost:3000",
        AUTH_URL=AUTH_URL,
        SUBMIT_CHALLENGE_URL=SUBMIT_URL,
        JWKS_URL=JWKS_URL,
        IDENTITY_API_URL=IDENTITY_URL,
        TRIPS_API_BASE_URL=TRIPS_BASE,
        DEVICE_DATA_API_BASE_URL=DEVICE_DATA_BASE,
        TOKEN_EXCHANGE_URL=EXCHANGE_URL,
        PRIVILEGES="1,3,4",
    )


# ---------------------------------------------------------------------------
# Signing keys and tokens
# ---------------------------------------------------------------------------

def _generate_key() -> Tuple[bytes, Dict[str, str]]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    return private_pem, public_jwk


@pytest.fixture(scope="session")
def signing_key() -> Tuple[bytes, Dict[str, str]]:
    private_pem, public_jwk = _generate_key()
    return private_pem, {**public_jwk, "kid": KID, "use": "sig"}


@pytest.fixture(scope="session")
def other_signing_key() -> Tuple[bytes, Dict[str, str]]:
    return _generate_key()


@pytest.fixture
def mint_token(signing_key):
    private_pem, _ = signing_key

    def _mint(
        address: Optional[str] = "0xABC",
        *,
        expires_in: int = 3600,
        kid: str = KID,
        key: Optional[bytes] = None,
        **extra: Any,
    ) -> str:
        now = int(time.time())
        claims: Dict[str, Any] = {"sub": "user-1", "iat": now, "exp": now + expires_in, **extra}
        if address is not None:
            claims["ethereum_address"] = address
        return jwt.encode(claims, key or private_pem, algorithm="RS256", headers={"kid": kid})

    return _mint


class FakeJwksResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if isinstance(self.payload, str):
            return json.loads(self.payload)
        return self.payload


class FakeJwksEndpoint:
    def __init__(self, keys: List[Dict[str, str]]) -> None:
        self.keys = keys
        self.calls = 0
        self.fail = False

    def get(self, url: str, timeout: float = 0) -> FakeJwksResponse:
        self.calls += 1
        if self.fail:
            raise requests.exceptions.ConnectionError("JWKS endpoint unreachable")
        return FakeJwksResponse({"keys": list(self.keys)})


@pytest.fixture
def jwks_endpoint(monkeypatch: pytest.MonkeyPatch, signing_key) -> FakeJwksEndpoint:
    endpoint = FakeJwksEndpoint([signing_key[1]])
    monkeypatch.setattr("trips_web.auth_utils.requests.get", endpoint.get)
    return endpoint


# ---------------------------------------------------------------------------
# App under test
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def api(upstream: FakeUpstream, test_settings: Settings, jwks_endpoint: FakeJwksEndpoint):
    """ASGI client for the app, wired to the fake upstreams (lifespan is not run)."""
    from trips_web.main import app, init_app_state

    upstream_client = upstream.client()
    init_app_state(app, test_settings, upstream_client)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    await upstream_client.aclose()

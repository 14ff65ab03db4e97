"""Shared fixtures and utilities for oidc-cli tests."""

import asyncio
import json
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from oidc_cli.config import OIDCConfig
from oidc_cli.oauth.keys import KeyPair

ISSUER = "https://id.example.com"
AUTHORIZATION_ENDPOINT = f"{ISSUER}/authorize"
PAR_ENDPOINT = f"{ISSUER}/par"
TOKEN_ENDPOINT = f"{ISSUER}/token"
INTROSPECTION_ENDPOINT = f"{ISSUER}/introspect"

# Port 0 lets the OS pick a free port for each test
CALLBACK_URI = "http://127.0.0.1:0/callback"

TOKEN_RESPONSE = {
    "access_token": "at-123",
    "token_type": "Bearer",
    "expires_in": 3600,
    "refresh_token": "rt-456",
}


# ============================================================================
# Key Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def rsa_key_pair() -> KeyPair:
    """An RSA 2048 key pair."""
    return KeyPair.from_keys(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def ec_key_pair() -> KeyPair:
    """A P-256 key pair."""
    return KeyPair.from_keys(ec.generate_private_key(ec.SECP256R1()))


@pytest.fixture(scope="session")
def ed25519_key_pair() -> KeyPair:
    """An Ed25519 key pair."""
    return KeyPair.from_keys(ed25519.Ed25519PrivateKey.generate())


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture
def oidc_config() -> OIDCConfig:
    """A confidential client with every endpoint configured."""
    return OIDCConfig(
        issuer=ISSUER,
        client_id="my-client",
        client_secret="my-secret",
        authorization_endpoint=AUTHORIZATION_ENDPOINT,
        par_endpoint=PAR_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        introspection_endpoint=INTROSPECTION_ENDPOINT,
    )


@pytest.fixture
def public_config(oidc_config: OIDCConfig) -> OIDCConfig:
    """A public client (no secret)."""
    oidc_config.client_secret = None
    return oidc_config


# ============================================================================
# Stub Provider
# ============================================================================


class StubProvider:
    """Records requests and answers them from per-path handlers.

    Each handler takes the request and returns an httpx.Response.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handlers: dict[str, Callable[[httpx.Request], httpx.Response]] = {
            "/token": lambda request: httpx.Response(200, json=TOKEN_RESPONSE),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def form_of(request: httpx.Request) -> dict[str, str]:
    """Decode a form-encoded request body."""
    return {k: v[0] for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()}


def json_response(status_code: int, data: Any, content_type: str = "application/json") -> httpx.Response:
    return httpx.Response(
        status_code, content=json.dumps(data).encode(), headers={"Content-Type": content_type}
    )


@pytest.fixture
def provider() -> StubProvider:
    """A stub authorization server."""
    return StubProvider()


# ============================================================================
# Browser Simulation
# ============================================================================


async def send_request(port: int, target: str, method: str = "GET") -> bytes:
    """Send one raw HTTP request to the callback server and return the response."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"{method} {target} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response

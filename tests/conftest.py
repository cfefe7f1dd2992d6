# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

import socket
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
from authlib.jose import JsonWebKey
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from coreason_oidc_rp.config import RelyingPartyConfig
from coreason_oidc_rp.messages import JWK, ClientInformation

ISSUER = "https://op.example.com"
CLIENT_ID = "rp-client-1"
CLIENT_SECRET = "rp-client-secret-with-enough-entropy"
REDIRECT_URI = "https://rp.example.com/callback"
PII_SALT = "test-suite-mandatory-salt-123"

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def mock_dns_resolution() -> Generator[MagicMock, None, None]:
    """
    Globally patches socket.getaddrinfo to return a safe public IP by default, so that
    SafeHTTPTransport never resolves the dummy hosts used across the suite.
    """
    safe_response = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443))]

    with patch("socket.getaddrinfo", return_value=safe_response) as mock:
        yield mock


class FakeOP:
    """
    An OpenID Provider served through httpx.MockTransport.

    Routes are keyed by method and URL without query string. Every request is recorded.
    """

    def __init__(self, issuer: str = ISSUER) -> None:
        self.issuer = issuer
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def route(
        self,
        method: str,
        url: str,
        status_code: int = 200,
        json: Any = None,
        content: bytes | str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status_code, json=json, headers=headers)
            return httpx.Response(status_code, content=content or b"", headers=headers)

        self.routes[(method, url)] = respond

    def handle(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method, url)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.netloc.decode('ascii')}{request.url.path}"
        handler = self.routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found", "error_description": url})
        return handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def last_request(self, path: str) -> httpx.Request:
        matches = [r for r in self.requests if r.url.path == path]
        assert matches, f"No request recorded for {path}"
        return matches[-1]


@pytest.fixture
def fake_op() -> FakeOP:
    return FakeOP()


@pytest.fixture
def config() -> RelyingPartyConfig:
    return RelyingPartyConfig(http_timeout=5.0, pii_salt=PII_SALT)


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def certificate(rsa_private_key: rsa.RSAPrivateKey) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Myself User")])
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(rsa_private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(rsa_private_key, hashes.SHA256())
    )


def make_jwk(kty: str, kid: str, use: str = "sig") -> JWK:
    """Generates a private JWK of the given type."""
    if kty == "RSA":
        key = JsonWebKey.generate_key("RSA", 2048, is_private=True)
    elif kty == "EC":
        key = JsonWebKey.generate_key("EC", "P-256", is_private=True)
    else:
        key = JsonWebKey.generate_key("oct", 256, is_private=True)
    return JWK.from_native(key, use=use, kid=kid, is_private=True)


@pytest.fixture(scope="session")
def op_rsa_key() -> JWK:
    return make_jwk("RSA", "op-rsa-1")


@pytest.fixture(scope="session")
def op_ec_key() -> JWK:
    return make_jwk("EC", "op-ec-1")


@pytest.fixture(scope="session")
def rp_enc_key() -> JWK:
    return make_jwk("RSA", "rp-enc-1", use="enc")


@pytest.fixture
def client_information() -> ClientInformation:
    return ClientInformation(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uris=[REDIRECT_URI],
        response_types=["code"],
    )


def claims_for(**overrides: Any) -> dict[str, Any]:
    """A valid ID Token claim set for CLIENT_ID issued by ISSUER, with overrides."""
    now = int(datetime.now(UTC).timestamp())
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "sub": "user-123",
        "aud": [CLIENT_ID],
        "exp": now + 300,
        "iat": now,
        "nonce": "NONCE123",
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}

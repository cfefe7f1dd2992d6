# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from conftest import ISSUER, FakeOP, make_jwk

from coreason_oidc_rp.discovery import (
    ISSUER_REL,
    obtain_issuer_from_email,
    obtain_issuer_from_url,
    obtain_provider_information,
)
from coreason_oidc_rp.exceptions import MessageValidationError, OIDCError, TransportError
from coreason_oidc_rp.messages import JWK

EMAIL = "jane@example.com"
WEBFINGER = "https://example.com/.well-known/webfinger"


def _webfinger(subject: str, expires: str | None = None, href: str | None = ISSUER) -> dict[str, Any]:
    links = [{"rel": "http://example.com/other", "href": "https://other.example.com"}]
    if href is not None:
        links.append({"rel": ISSUER_REL, "href": href})
    body: dict[str, Any] = {"subject": subject, "links": links}
    if expires is not None:
        body["expires"] = expires
    return body


@pytest.mark.asyncio
async def test_obtain_issuer_from_email(fake_op: FakeOP) -> None:
    fake_op.route("GET", WEBFINGER, json=_webfinger(f"acct:{EMAIL}"))

    async with fake_op.client() as client:
        issuer = await obtain_issuer_from_email(client, EMAIL)

    assert issuer == ISSUER
    request = fake_op.last_request("/.well-known/webfinger")
    assert request.url.params["resource"] == f"acct:{EMAIL}"
    assert request.url.params["rel"] == ISSUER_REL


@pytest.mark.asyncio
async def test_obtain_issuer_from_email_with_explicit_host(fake_op: FakeOP) -> None:
    fake_op.route("GET", "https://wf.example.net/.well-known/webfinger", json=_webfinger(f"acct:{EMAIL}"))

    async with fake_op.client() as client:
        assert await obtain_issuer_from_email(client, EMAIL, "https://wf.example.net") == ISSUER


@pytest.mark.asyncio
async def test_obtain_issuer_from_url(fake_op: FakeOP) -> None:
    url = "https://example.com/joe"
    fake_op.route("GET", "https://example.com/joe/.well-known/webfinger", json=_webfinger(url))
    fake_op.route("GET", WEBFINGER, json=_webfinger(url))

    async with fake_op.client() as client:
        assert await obtain_issuer_from_url(client, url) == ISSUER
        assert await obtain_issuer_from_url(client, url, "https://example.com") == ISSUER


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["http://example.com/joe", "example.com", "ftp://example.com"])
async def test_malformed_url_rejected(value: str) -> None:
    with pytest.raises(OIDCError, match="Wrong format for url passed as parameter."):
        await obtain_issuer_from_url(None, value)  # type: ignore[arg-type]


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["jane", "jane@", "@example.com", "jane doe@example.com"])
async def test_malformed_email_rejected(value: str) -> None:
    with pytest.raises(OIDCError, match="Wrong format for email passed as parameter."):
        await obtain_issuer_from_email(None, value)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_expired_claims_rejected(fake_op: FakeOP) -> None:
    expired = (datetime.now(UTC) - timedelta(hours=1)).isoformat()
    fake_op.route("GET", WEBFINGER, json=_webfinger(f"acct:{EMAIL}", expires=expired))

    async with fake_op.client() as client:
        with pytest.raises(OIDCError, match="Claims expired on"):
            await obtain_issuer_from_email(client, EMAIL)


@pytest.mark.asyncio
async def test_expires_within_leeway_accepted(fake_op: FakeOP) -> None:
    recent = (datetime.now(UTC) - timedelta(minutes=5)).isoformat()
    fake_op.route("GET", WEBFINGER, json=_webfinger(f"acct:{EMAIL}", expires=recent))

    async with fake_op.client() as client:
        assert await obtain_issuer_from_email(client, EMAIL, leeway=600) == ISSUER


@pytest.mark.asyncio
async def test_subject_mismatch_rejected(fake_op: FakeOP) -> None:
    fake_op.route("GET", WEBFINGER, json=_webfinger("acct:someone.else@example.com"))

    async with fake_op.client() as client:
        with pytest.raises(OIDCError, match="Claims released for a different subject."):
            await obtain_issuer_from_email(client, EMAIL)


@pytest.mark.asyncio
async def test_missing_issuer_link_rejected(fake_op: FakeOP) -> None:
    fake_op.route("GET", WEBFINGER, json=_webfinger(f"acct:{EMAIL}", href=None))

    async with fake_op.client() as client:
        with pytest.raises(OIDCError, match="No issuer found in claims returned."):
            await obtain_issuer_from_email(client, EMAIL)


@pytest.mark.asyncio
async def test_webfinger_http_failure_is_transport_error(fake_op: FakeOP) -> None:
    fake_op.route("GET", WEBFINGER, status_code=500, content=b"boom")

    async with fake_op.client() as client:
        with pytest.raises(TransportError):
            await obtain_issuer_from_email(client, EMAIL)


def _discovery(issuer: str = ISSUER) -> dict[str, Any]:
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "userinfo_endpoint": f"{ISSUER}/userinfo",
        "registration_endpoint": f"{ISSUER}/register",
        "jwks_uri": f"{ISSUER}/jwks",
        "response_types_supported": ["code", "id_token", "code id_token"],
        "id_token_signing_alg_values_supported": ["RS256", "ES256"],
    }


@pytest.mark.asyncio
async def test_obtain_provider_information_loads_keys(fake_op: FakeOP, op_rsa_key: JWK) -> None:
    fake_op.route("GET", f"{ISSUER}/.well-known/openid-configuration", json=_discovery())
    fake_op.route("GET", f"{ISSUER}/jwks", json={"keys": [op_rsa_key.public().to_dict()]})

    async with fake_op.client() as client:
        provider = await obtain_provider_information(client, ISSUER, expected_issuer=ISSUER)

    assert provider.issuer == ISSUER
    assert provider.token_endpoint == f"{ISSUER}/token"
    assert provider.keys is not None
    assert [key.kid for key in provider.keys] == ["op-rsa-1"]
    assert not provider.keys[0].is_private


@pytest.mark.asyncio
async def test_wrong_issuer_discards_configuration(fake_op: FakeOP) -> None:
    fake_op.route("GET", f"{ISSUER}/.well-known/openid-configuration", json=_discovery("https://evil.example.com"))

    async with fake_op.client() as client:
        with pytest.raises(OIDCError, match="Wrong issuer, discarding configuration"):
            await obtain_provider_information(client, ISSUER, expected_issuer=ISSUER)

    assert all(request.url.path != "/jwks" for request in fake_op.requests)


@pytest.mark.asyncio
async def test_keys_without_use_rejected(fake_op: FakeOP, op_rsa_key: JWK) -> None:
    key = op_rsa_key.public().to_dict()
    key.pop("use")
    fake_op.route("GET", f"{ISSUER}/.well-known/openid-configuration", json=_discovery())
    fake_op.route("GET", f"{ISSUER}/jwks", json={"keys": [key]})

    async with fake_op.client() as client:
        with pytest.raises(MessageValidationError, match="The use parameter is missing in key."):
            await obtain_provider_information(client, ISSUER)


@pytest.mark.asyncio
async def test_each_call_fetches_a_fresh_key_snapshot(fake_op: FakeOP, op_rsa_key: JWK) -> None:
    rotated = make_jwk("RSA", "op-rsa-2").public()
    served = [[op_rsa_key.public()], [op_rsa_key.public(), rotated]]

    def jwks(request: httpx.Request) -> httpx.Response:
        keys = served.pop(0) if len(served) > 1 else served[0]
        return httpx.Response(200, json={"keys": [key.to_dict() for key in keys]})

    fake_op.route("GET", f"{ISSUER}/.well-known/openid-configuration", json=_discovery())
    fake_op.handle("GET", f"{ISSUER}/jwks", jwks)

    async with fake_op.client() as client:
        first = await obtain_provider_information(client, ISSUER)
        second = await obtain_provider_information(client, ISSUER)

    assert first.keys is not None and second.keys is not None
    assert [key.kid for key in first.keys] == ["op-rsa-1"]
    assert [key.kid for key in second.keys] == ["op-rsa-1", "op-rsa-2"]

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

"""
Tests for the HTTP transport layer.
"""

import socket
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from coreason_oidc_rp.exceptions import OversizedResponseError, RequestTimeoutError, TransportError
from coreason_oidc_rp.transport import HttpResult, SafeHTTPTransport, SecurityError, fetch


def _client(handler: httpx.MockTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=handler)


def _result(status_code: int, content: bytes, content_type: str = "application/json") -> HttpResult:
    return HttpResult(
        url="https://op.example.com/x",
        status_code=status_code,
        headers={"content-type": content_type},
        content=content,
    )


# SafeHTTPTransport


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["192.168.1.1", "10.0.0.5", "127.0.0.1", "169.254.169.254"])
async def test_safe_transport_blocks_private_ip(mock_dns_resolution: MagicMock, address: str) -> None:
    mock_dns_resolution.return_value = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (address, 443))]
    request = httpx.Request("GET", "https://internal.example.com/jwks")

    with pytest.raises(SecurityError, match="No valid public IP"):
        await SafeHTTPTransport().handle_async_request(request)


@pytest.mark.asyncio
async def test_safe_transport_blocks_literal_private_ip() -> None:
    request = httpx.Request("GET", "https://10.1.2.3/.well-known/openid-configuration")

    with pytest.raises(SecurityError, match="is blocked"):
        await SafeHTTPTransport().handle_async_request(request)


@pytest.mark.asyncio
async def test_safe_transport_pins_public_ip(mock_dns_resolution: MagicMock) -> None:
    mock_dns_resolution.return_value = [
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.1", 443)),
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443)),
    ]

    with patch("httpx.AsyncHTTPTransport.handle_async_request", new_callable=AsyncMock) as mock_super:
        mock_super.return_value = httpx.Response(200)

        request = httpx.Request("GET", "https://op.example.com/jwks")
        await SafeHTTPTransport().handle_async_request(request)

    assert request.url.host == "8.8.8.8"
    assert request.headers["host"] == "op.example.com"
    assert request.extensions["sni_hostname"] == "op.example.com"


@pytest.mark.asyncio
async def test_safe_transport_dns_failure(mock_dns_resolution: MagicMock) -> None:
    mock_dns_resolution.side_effect = socket.gaierror("no such host")

    with pytest.raises(SecurityError, match="DNS resolution failed"):
        await SafeHTTPTransport().handle_async_request(httpx.Request("GET", "https://nowhere.example.com"))


@pytest.mark.asyncio
async def test_safe_transport_requires_https() -> None:
    request = httpx.Request("GET", "http://op.example.com/.well-known/openid-configuration")

    with pytest.raises(SecurityError, match="HTTPS is required"):
        await SafeHTTPTransport().handle_async_request(request)


# fetch


@pytest.mark.asyncio
async def test_fetch_reads_body() -> None:
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"ok": True}, headers={"X-Test": "1"}))

    async with _client(transport) as client:
        result = await fetch(client, "https://op.example.com/x", params={"a": "b"})

    assert result.status_code == 200
    assert result.url == "https://op.example.com/x?a=b"
    assert result.headers["x-test"] == "1"
    assert result.json_object() == {"ok": True}


@pytest.mark.asyncio
async def test_fetch_size_cap_on_body() -> None:
    transport = httpx.MockTransport(lambda r: httpx.Response(200, content=b"x" * 2048))

    async with _client(transport) as client:
        with pytest.raises(OversizedResponseError):
            await fetch(client, "https://op.example.com/x", max_bytes=1024)


@pytest.mark.asyncio
async def test_fetch_size_cap_on_content_length() -> None:
    transport = httpx.MockTransport(lambda r: httpx.Response(200, headers={"Content-Length": "999999"}, content=b""))

    async with _client(transport) as client:
        with pytest.raises(OversizedResponseError):
            await fetch(client, "https://op.example.com/x", max_bytes=10)


@pytest.mark.asyncio
async def test_fetch_timeout() -> None:
    def raise_timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with _client(httpx.MockTransport(raise_timeout)) as client:
        with pytest.raises(RequestTimeoutError):
            await fetch(client, "https://op.example.com/x")


@pytest.mark.asyncio
async def test_fetch_network_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(httpx.MockTransport(refuse)) as client:
        with pytest.raises(TransportError, match="failed"):
            await fetch(client, "https://op.example.com/x")


@pytest.mark.asyncio
async def test_fetch_does_not_follow_redirects_when_asked() -> None:
    transport = httpx.MockTransport(lambda r: httpx.Response(302, headers={"Location": "https://rp.example.com/cb"}))

    async with _client(transport) as client:
        result = await fetch(client, "https://op.example.com/authorize", follow_redirects=False)

    assert result.is_redirect
    assert result.headers["location"] == "https://rp.example.com/cb"


# HttpResult


def test_json_object_error_body_on_error_status() -> None:
    data = _result(400, b'{"error": "invalid_request"}').json_object()
    assert data == {"error": "invalid_request"}


def test_json_object_non_2xx_without_error() -> None:
    with pytest.raises(TransportError, match="Unexpected HTTP status 500"):
        _result(500, b'{"message": "boom"}').json_object()
    with pytest.raises(TransportError, match="Unexpected HTTP status 502"):
        _result(502, b"<html>bad gateway</html>", "text/html").json_object()


def test_json_object_malformed() -> None:
    with pytest.raises(TransportError, match="Malformed JSON"):
        _result(200, b"{not json").json_object()
    with pytest.raises(TransportError, match="Expected a JSON object"):
        _result(200, b"[1, 2]").json_object()


def test_content_type_normalized() -> None:
    assert _result(200, b"", "Application/JWT; charset=utf-8").content_type == "application/jwt"

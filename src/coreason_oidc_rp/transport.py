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
HTTP transport for talking to an OpenID Provider.

Every outbound call goes through `fetch`, which bounds the body size and maps httpx
failures onto the package's TransportError family. No retries are performed here.
"""

import ipaddress
import json
import socket
from typing import Any

import anyio
import httpx
from pydantic import BaseModel, ConfigDict

from coreason_oidc_rp.exceptions import (
    OversizedResponseError,
    RequestTimeoutError,
    TransportError,
)
from coreason_oidc_rp.utils.logger import logger

DEFAULT_MAX_RESPONSE_BYTES = 1_000_000


class SecurityError(TransportError):
    """Raised when an OP host resolves to an address we refuse to connect to."""


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    An async transport that pins each connection to a validated public IP.

    Only https URLs are accepted. The hostname is resolved once, private/loopback/
    link-local/reserved/multicast addresses are rejected, and the request is rewritten to
    the chosen IP while keeping the original Host header and SNI name for certificate
    verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.url.scheme != "https":
            logger.warning(f"Security violation: Plain {request.url.scheme} request to {request.url.host}")
            raise SecurityError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")

        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            self._validate_ip(ip_obj, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.error(f"DNS resolution failed for {hostname}: {e}")
            raise SecurityError(f"DNS resolution failed for {hostname}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            ip_str = str(sockaddr[0])
            try:
                self._validate_ip(ipaddress.ip_address(ip_str), hostname)
            except (SecurityError, ValueError):
                continue
            target_ip = ip_str
            break

        if not target_ip:
            logger.error(f"Security violation: No valid public IP found for {hostname}")
            raise SecurityError(f"Security violation: No valid public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"Security violation: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"Access to {hostname} ({ip_obj}) is blocked")


class HttpResult(BaseModel):
    """
    A fully read HTTP response.

    Attributes:
        url (str): The final URL of the request.
        status_code (int): The HTTP status code.
        headers (dict[str, str]): Response headers, lower-cased names.
        content (bytes): The raw body, bounded by the size limit of the call.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    status_code: int
    headers: dict[str, str]
    content: bytes

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_redirect(self) -> bool:
        return self.status_code in (301, 302, 303, 307, 308) and "location" in self.headers

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").split(";")[0].strip().lower()

    def raise_for_status(self) -> None:
        """
        Raises TransportError on any non-2xx status.
        """
        if not self.is_success:
            raise TransportError(f"Unexpected HTTP status {self.status_code} from {self.url}")

    def json_object(self) -> dict[str, Any]:
        """
        Decodes the body as a JSON object.

        A body carrying an `error` member is returned whatever the status code, so the
        caller can surface the OP's error. Any other non-2xx status is a transport failure.

        Raises:
            TransportError: If the status is not 2xx, or the body is not a JSON object.
        """
        try:
            data = json.loads(self.content)
        except ValueError as e:
            if not self.is_success:
                self.raise_for_status()
            raise TransportError(f"Malformed JSON received from {self.url}") from e

        if not isinstance(data, dict):
            raise TransportError(f"Expected a JSON object from {self.url}")

        if "error" in data:
            return data

        self.raise_for_status()
        return data


async def fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    *,
    params: dict[str, str] | None = None,
    data: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    follow_redirects: bool = True,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> HttpResult:
    """
    Performs one HTTP request and reads the body with a size cap.

    Args:
        client: The async HTTP client to use.
        url: Target URL.
        method: HTTP method.
        params: Query parameters.
        data: Form-urlencoded body.
        json_body: JSON body.
        headers: Extra request headers.
        follow_redirects: Whether redirects are followed.
        max_bytes: Maximum accepted body size.

    Returns:
        HttpResult: The response with its full body.

    Raises:
        RequestTimeoutError: If the call timed out.
        OversizedResponseError: If the body exceeds `max_bytes`.
        TransportError: For any other network failure.
    """
    try:
        async with client.stream(
            method,
            url,
            params=params,
            data=data,
            json=json_body,
            headers=headers,
            follow_redirects=follow_redirects,
        ) as response:
            content_length = response.headers.get("Content-Length")
            if content_length and content_length.isdigit() and int(content_length) > max_bytes:
                raise OversizedResponseError(f"Response from {url} exceeds {max_bytes} bytes")

            content = bytearray()
            async for chunk in response.aiter_bytes():
                content.extend(chunk)
                if len(content) > max_bytes:
                    raise OversizedResponseError(f"Response from {url} exceeds {max_bytes} bytes")

            return HttpResult(
                url=str(response.url),
                status_code=response.status_code,
                headers={k.lower(): v for k, v in response.headers.items()},
                content=bytes(content),
            )
    except httpx.TimeoutException as e:
        logger.warning(f"{method} {url} timed out")
        raise RequestTimeoutError(f"Request to {url} timed out") from e
    except httpx.HTTPError as e:
        logger.warning(f"{method} {url} failed: {e}")
        raise TransportError(f"Request to {url} failed: {e}") from e

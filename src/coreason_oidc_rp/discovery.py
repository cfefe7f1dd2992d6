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
Issuer discovery (WebFinger) and OP configuration retrieval.
"""

import re
from datetime import UTC, datetime, timedelta

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_oidc_rp.exceptions import CoreasonOIDCError, OIDCError
from coreason_oidc_rp.messages import JWK, JWKSet, ProviderMetadata, WebFingerResponse
from coreason_oidc_rp.transport import DEFAULT_MAX_RESPONSE_BYTES, fetch
from coreason_oidc_rp.utils.logger import logger

tracer = trace.get_tracer(__name__)

WEBFINGER_PATH = "/.well-known/webfinger"
DISCOVERY_PATH = "/.well-known/openid-configuration"
ISSUER_REL = "http://openid.net/specs/connect/1.0/issuer"

URL_PATTERN = re.compile(
    r"^https://([\w+?\.\w+])+([a-zA-Z0-9\~\!\@\#\$\%\^\&\*\(\)_\-\=\+\\\/\?\.\:\;\'\,]*)?$",
    re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(r"^([\w\.\-]+)@([\w\-]+)(\.([\w\-]+))*((\.(\w){2,3})+)?$")


def _parse_expires(value: str) -> datetime:
    try:
        expires = datetime.fromisoformat(value)
    except ValueError as e:
        raise OIDCError(f"Invalid expires value in claims returned: {value}") from e
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=UTC)
    return expires


async def obtain_issuer(
    client: httpx.AsyncClient,
    hostname: str,
    resource: str,
    leeway: int = 600,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> str:
    """
    Runs a WebFinger query for `resource` against `hostname` and returns the OIDC issuer.

    Args:
        client: The async HTTP client.
        hostname: Base URL of the WebFinger host (scheme included).
        resource: The queried resource (`acct:` URI or URL).
        leeway: Seconds of clock skew tolerated on `expires`.
        max_bytes: Response size cap.

    Returns:
        str: The `href` of the issuer link.

    Raises:
        OIDCError: If the claims expired, were released for another subject, or carry no issuer.
        TransportError: If the WebFinger call fails.
    """
    with tracer.start_as_current_span("obtain_issuer") as span:
        span.set_attribute("webfinger.host", hostname)
        try:
            result = await fetch(
                client,
                f"{hostname}{WEBFINGER_PATH}",
                params={"resource": resource, "rel": ISSUER_REL},
                max_bytes=max_bytes,
            )
            answer = WebFingerResponse.from_dict(result.json_object())

            if answer.expires is not None:
                expires = _parse_expires(answer.expires)
                if expires < datetime.now(UTC) - timedelta(seconds=leeway):
                    raise OIDCError(f"Claims expired on {answer.expires}")

            if answer.subject != resource:
                raise OIDCError("Claims released for a different subject.")

            issuer: str | None = None
            for link in answer.links or []:
                if link.rel == ISSUER_REL:
                    issuer = link.href

            if issuer is None:
                raise OIDCError("No issuer found in claims returned.")

            logger.info(f"WebFinger at {hostname} returned issuer {issuer}")
            span.set_status(Status(StatusCode.OK))
            return issuer
        except CoreasonOIDCError as e:
            logger.warning(f"Issuer discovery at {hostname} failed: {e}")
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


async def obtain_issuer_from_url(
    client: httpx.AsyncClient,
    url: str,
    hostname: str | None = None,
    leeway: int = 600,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> str:
    """
    Discovers the issuer for a URL identifier.

    Args:
        client: The async HTTP client.
        url: The https URL identifying the user.
        hostname: WebFinger host to query. Defaults to the URL itself without its trailing slash.
        leeway: Seconds of clock skew tolerated on `expires`.
        max_bytes: Response size cap.

    Raises:
        OIDCError: "Wrong format for url passed as parameter." for a malformed URL, or any
            WebFinger validation failure.
    """
    if not URL_PATTERN.match(url):
        raise OIDCError("Wrong format for url passed as parameter.")
    return await obtain_issuer(client, hostname or url.rstrip("/"), url, leeway=leeway, max_bytes=max_bytes)


async def obtain_issuer_from_email(
    client: httpx.AsyncClient,
    email: str,
    hostname: str | None = None,
    leeway: int = 600,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> str:
    """
    Discovers the issuer for an e-mail style identifier (queried as `acct:<email>`).

    Args:
        client: The async HTTP client.
        email: The user identifier.
        hostname: WebFinger host to query. Defaults to `https://` plus the e-mail domain.
        leeway: Seconds of clock skew tolerated on `expires`.
        max_bytes: Response size cap.

    Raises:
        OIDCError: "Wrong format for email passed as parameter." for a malformed address,
            or any WebFinger validation failure.
    """
    if not EMAIL_PATTERN.match(email):
        raise OIDCError("Wrong format for email passed as parameter.")
    host = hostname or f"https://{email.split('@', 1)[1]}"
    return await obtain_issuer(client, host, f"acct:{email}", leeway=leeway, max_bytes=max_bytes)


async def fetch_jwks(
    client: httpx.AsyncClient,
    jwks_uri: str,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> list[JWK]:
    """
    Fetches a JWK Set. Every call returns a fresh snapshot.

    Raises:
        MessageValidationError: If a key lacks `use` or `kty`.
        TransportError: If the call fails.
    """
    result = await fetch(client, jwks_uri, max_bytes=max_bytes)
    key_set = JWKSet.from_dict(result.json_object())
    logger.debug(f"Fetched {len(key_set.keys)} keys from {jwks_uri}")
    return list(key_set.keys)


async def obtain_provider_information(
    client: httpx.AsyncClient,
    hostname: str,
    expected_issuer: str | None = None,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> ProviderMetadata:
    """
    Retrieves the OP configuration and the keys published at its `jwks_uri`.

    Args:
        client: The async HTTP client.
        hostname: The issuer base URL.
        expected_issuer: Issuer the configuration must declare, typically the one returned by WebFinger.
        max_bytes: Response size cap.

    Returns:
        ProviderMetadata: The configuration with `keys` populated when `jwks_uri` is present.

    Raises:
        OIDCError: "Wrong issuer, discarding configuration" when `issuer` differs from
            `expected_issuer`, or if the OP answered with an error.
        TransportError: If a call fails.
    """
    with tracer.start_as_current_span("obtain_provider_information") as span:
        span.set_attribute("oidc.hostname", hostname)
        try:
            result = await fetch(client, f"{hostname.rstrip('/')}{DISCOVERY_PATH}", max_bytes=max_bytes)
            metadata = ProviderMetadata.from_dict(result.json_object())

            if expected_issuer is not None and expected_issuer != metadata.issuer:
                logger.warning(f"Discovery at {hostname} declared issuer {metadata.issuer}, expected {expected_issuer}")
                raise OIDCError("Wrong issuer, discarding configuration")

            if metadata.jwks_uri:
                keys = await fetch_jwks(client, metadata.jwks_uri, max_bytes=max_bytes)
                metadata = metadata.model_copy(update={"keys": keys})

            logger.info(f"Loaded provider configuration for {metadata.issuer}")
            span.set_status(Status(StatusCode.OK))
            return metadata
        except CoreasonOIDCError as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise

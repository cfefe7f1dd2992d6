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
Client authentication at the token endpoint.
"""

import base64
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, TypeVar

from coreason_oidc_rp import jose
from coreason_oidc_rp.exceptions import OIDCError
from coreason_oidc_rp.messages import JWK, AuthenticatedMessage, ClientInformation, ClientSecretJWT
from coreason_oidc_rp.utils.encoding import random_string

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

A = TypeVar("A", bound=AuthenticatedMessage)


class ClientAuthMethod(StrEnum):
    CLIENT_SECRET_BASIC = "client_secret_basic"
    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_JWT = "client_secret_jwt"
    PRIVATE_KEY_JWT = "private_key_jwt"
    NONE = "none"


def assertion_audience(endpoint: str) -> str:
    """The endpoint URL with any query string removed."""
    return endpoint.split("?", 1)[0]


def build_client_assertion(
    client_id: str,
    endpoint: str,
    key: Any,
    alg: str,
    lifetime: int = 600,
    kid: str | None = None,
) -> str:
    """
    Builds a signed JWT bearer client assertion.

    Args:
        client_id: Used as both `iss` and `sub`.
        endpoint: The endpoint the assertion is sent to. Its query is stripped for `aud`.
        key: HMAC secret bytes or private key.
        alg: JWS algorithm.
        lifetime: Seconds between `iat` and `exp`.
        kid: Key id placed in the JWS header.
    """
    now = datetime.now(UTC).replace(microsecond=0)
    claims = ClientSecretJWT(
        iss=client_id,
        sub=client_id,
        aud=assertion_audience(endpoint),
        jti=random_string(),
        iat=now,
        exp=now + timedelta(seconds=lifetime),
    )
    return jose.encode_jws(claims.to_dict(), key, alg, kid=kid)


def _require_secret(client_information: ClientInformation, method: str) -> str:
    if not client_information.client_secret:
        raise OIDCError(f"Client authentication {method} requires a client_secret.")
    return client_information.client_secret


def apply_client_authentication(
    message: A,
    endpoint: str,
    client_information: ClientInformation,
    private_key: Any = None,
    assertion_lifetime: int = 600,
) -> tuple[A, dict[str, str]]:
    """
    Adds client authentication to an outgoing request.

    The method is `client_information.token_endpoint_auth_method`, defaulting to
    `client_secret_basic`. The input message is left untouched.

    Args:
        message: The request to authenticate.
        endpoint: The URL the request goes to.
        client_information: The registered client.
        private_key: Signing key for `private_key_jwt` (JWK, authlib or cryptography key).
        assertion_lifetime: Lifetime in seconds of JWT assertions.

    Returns:
        tuple: The authenticated message copy and the extra HTTP headers to send.

    Raises:
        OIDCError: If the method is unknown or the material it needs is missing.
    """
    method = client_information.token_endpoint_auth_method or ClientAuthMethod.CLIENT_SECRET_BASIC
    client_id = client_information.client_id or ""

    match method:
        case ClientAuthMethod.CLIENT_SECRET_BASIC:
            secret = _require_secret(client_information, method)
            credentials = base64.b64encode(f"{client_id}:{secret}".encode()).decode("ascii")
            return message.model_copy(update={"client_secret": None}), {"Authorization": f"Basic {credentials}"}

        case ClientAuthMethod.CLIENT_SECRET_POST:
            secret = _require_secret(client_information, method)
            return message.model_copy(update={"client_id": client_id, "client_secret": secret}), {}

        case ClientAuthMethod.CLIENT_SECRET_JWT:
            secret = _require_secret(client_information, method)
            alg = client_information.token_endpoint_auth_signing_alg or "HS256"
            assertion = build_client_assertion(client_id, endpoint, secret.encode("utf-8"), alg, assertion_lifetime)

        case ClientAuthMethod.PRIVATE_KEY_JWT:
            if private_key is None:
                raise OIDCError("Client authentication private_key_jwt requires a private key.")
            alg = client_information.token_endpoint_auth_signing_alg or "RS256"
            kid = private_key.kid if isinstance(private_key, JWK) else None
            assertion = build_client_assertion(client_id, endpoint, private_key, alg, assertion_lifetime, kid=kid)

        case ClientAuthMethod.NONE:
            return message, {}

        case _:
            raise OIDCError(f"Unsupported token_endpoint_auth_method {method}.")

    update = {
        "client_secret": None,
        "client_assertion_type": CLIENT_ASSERTION_TYPE,
        "client_assertion": assertion,
    }
    return message.model_copy(update=update), {}

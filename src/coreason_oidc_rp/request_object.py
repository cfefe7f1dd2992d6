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
Request objects passed by value (`request`) or by reference (`request_uri`).

Encoding signs first and encrypts second; decoding decrypts first and verifies second.
"""

from collections.abc import Sequence
from typing import Any

import httpx

from coreason_oidc_rp import jose
from coreason_oidc_rp.exceptions import KeyNotFoundError
from coreason_oidc_rp.keys import USE_ENCRYPTION, USE_SIGNATURE, kty_for_algorithm, select_key
from coreason_oidc_rp.messages import AuthorizationRequest
from coreason_oidc_rp.transport import DEFAULT_MAX_RESPONSE_BYTES, fetch
from coreason_oidc_rp.utils.logger import logger


def build_request_object(
    request: AuthorizationRequest,
    sign_key: Any = None,
    sign_alg: str = jose.NONE_ALGORITHM,
    enc_key: Any = None,
    enc_alg: str | None = None,
    enc_enc: str | None = None,
    sign_kid: str | None = None,
    enc_kid: str | None = None,
) -> str:
    """
    Serializes `request` as a request object JWT.

    Args:
        request: The authorization request to embed.
        sign_key: Signing key. Ignored for `alg=none`.
        sign_alg: JWS algorithm, "none" for an unsigned object.
        enc_key: Key of the OP to encrypt for. No encryption without it.
        enc_alg: JWE key management algorithm.
        enc_enc: JWE content encryption algorithm.
        sign_kid: `kid` header of the JWS.
        enc_kid: `kid` header of the JWE.
    """
    return jose.encode(
        request.to_dict(),
        sign_key,
        sign_alg,
        enc_key=enc_key,
        enc_alg=enc_alg,
        enc_enc=enc_enc,
        sign_kid=sign_kid,
        enc_kid=enc_kid,
    )


def _pick_key(keys: Any, token: str, use: str) -> Any:
    if isinstance(keys, Sequence) and not isinstance(keys, (str, bytes)):
        header = jose.get_header(token)
        return select_key(keys, header.get("kid"), use, kty_for_algorithm(header["alg"]))
    return keys


def unpack_request_object(
    token: str,
    verify_key: Any = None,
    decrypt_key: Any = None,
    allow_none: bool = False,
    validate: bool = True,
) -> AuthorizationRequest:
    """
    Decrypts (when encrypted) and verifies a request object.

    Args:
        token: The compact request object.
        verify_key: Verification key, or a JWK list to select from.
        decrypt_key: Decryption key, or a JWK list to select from.
        allow_none: Accept an unsigned request object.
        validate: Apply the authorization request presence rules to the unpacked claims.

    Raises:
        IntegrityError: If decryption or verification fails.
        KeyResolutionError: If no key is available for a layer.
        MessageValidationError: If the claims do not form a valid authorization request.
    """
    if jose.is_encrypted(token):
        if decrypt_key is None:
            raise KeyNotFoundError("No key available to decrypt the request object.")
        token = jose.decode_jwe(token, _pick_key(decrypt_key, token, USE_ENCRYPTION)).decode("utf-8")

    if jose.get_header(token)["alg"] == jose.NONE_ALGORITHM:
        payload = jose.decode_jws(token, None, allow_none=allow_none)
    else:
        if verify_key is None:
            raise KeyNotFoundError("No key available to verify the request object.")
        payload = jose.decode_jws(token, _pick_key(verify_key, token, USE_SIGNATURE))

    return AuthorizationRequest.from_dict(jose.payload_claims(payload), validate=validate)


async def resolve_request_object(
    client: httpx.AsyncClient,
    request: AuthorizationRequest,
    verify_key: Any = None,
    decrypt_key: Any = None,
    allow_none: bool = False,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> AuthorizationRequest:
    """
    Returns the effective authorization request.

    The request object (inline `request`, or the document fetched from `request_uri`) is
    unpacked and its parameters take precedence over the outer query parameters. A
    request carrying neither is returned unchanged.

    Raises:
        TransportError: If fetching `request_uri` fails.
        IntegrityError: If the request object does not decrypt or verify.
    """
    if request.request is not None:
        token = request.request
    elif request.request_uri is not None:
        result = await fetch(client, request.request_uri, max_bytes=max_bytes)
        result.raise_for_status()
        token = result.text.strip()
        logger.debug(f"Fetched request object from {request.request_uri}")
    else:
        return request

    inner = unpack_request_object(token, verify_key, decrypt_key, allow_none, validate=False)
    merged = {**request.to_dict(), **inner.to_dict()}
    merged.pop("request", None)
    merged.pop("request_uri", None)
    return AuthorizationRequest.from_dict(merged)


__all__ = [
    "build_request_object",
    "resolve_request_object",
    "unpack_request_object",
]

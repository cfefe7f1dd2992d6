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
JWS / JWE compact serialization on top of authlib.

Each decode call removes exactly one layer. A sign-then-encrypt token is therefore read
with `decode_jwe` followed by `decode_jws`. Choosing the key is the caller's job
(see `coreason_oidc_rp.keys`).
"""

import json
from typing import Any

from authlib.common.encoding import to_unicode
from authlib.jose import JsonWebEncryption, JsonWebSignature
from authlib.jose.errors import BadSignatureError, JoseError
from cryptography.exceptions import InvalidTag

from coreason_oidc_rp.exceptions import IntegrityError
from coreason_oidc_rp.messages import JWK
from coreason_oidc_rp.utils.encoding import b64url_decode

NONE_ALGORITHM = "none"

SIGNING_ALGORITHMS = [
    "HS256",
    "HS384",
    "HS512",
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
]

KEY_ENCRYPTION_ALGORITHMS = ["RSA1_5", "RSA-OAEP", "RSA-OAEP-256", "A128KW", "A256KW", "dir"]
CONTENT_ENCRYPTION_ALGORITHMS = ["A128CBC-HS256", "A192CBC-HS384", "A256CBC-HS512", "A128GCM", "A256GCM"]

DEFAULT_ENC_ALG = "RSA1_5"
DEFAULT_ENC_ENC = "A128CBC-HS256"


def _native(key: Any) -> Any:
    if isinstance(key, JWK):
        return key.to_native()
    return key


def _payload_bytes(payload: bytes | str | dict[str, Any]) -> bytes:
    if isinstance(payload, dict):
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def get_header(token: str) -> dict[str, Any]:
    """
    Returns the protected header of a compact JWS or JWE.

    Raises:
        IntegrityError: If the token is not a compact serialization.
    """
    try:
        header = json.loads(b64url_decode(token.split(".", 1)[0]))
    except ValueError as e:
        raise IntegrityError("Malformed JOSE token header.") from e
    if not isinstance(header, dict) or not isinstance(header.get("alg"), str):
        raise IntegrityError("Malformed JOSE token header.")
    return header


def is_encrypted(token: str) -> bool:
    """True when `token` is a JWE (five segments and an `enc` header)."""
    return token.count(".") == 4 and "enc" in get_header(token)


def encode_jws(
    payload: bytes | str | dict[str, Any],
    key: Any,
    alg: str,
    kid: str | None = None,
    headers: dict[str, Any] | None = None,
) -> str:
    """
    Signs `payload` into a compact JWS.

    With `alg="none"` the key is ignored and the signature segment is empty.

    Args:
        payload: Claims mapping, text or raw bytes.
        key: authlib Key, JWK message, cryptography key or raw HMAC secret bytes.
        alg: JWS algorithm.
        kid: Optional key id placed in the header.
        headers: Extra protected header members.
    """
    protected: dict[str, Any] = dict(headers or {})
    protected["alg"] = alg
    if kid:
        protected["kid"] = kid
    signing_key = None if alg == NONE_ALGORITHM else _native(key)
    jws = JsonWebSignature(algorithms=[alg])
    return to_unicode(jws.serialize_compact(protected, _payload_bytes(payload), signing_key))


def encode_jwe(
    payload: bytes | str | dict[str, Any],
    key: Any,
    alg: str = DEFAULT_ENC_ALG,
    enc: str = DEFAULT_ENC_ENC,
    kid: str | None = None,
    content_type: str | None = None,
) -> str:
    """
    Encrypts `payload` into a compact JWE for the holder of `key`.
    """
    protected: dict[str, Any] = {"alg": alg, "enc": enc}
    if kid:
        protected["kid"] = kid
    if content_type:
        protected["cty"] = content_type
    jwe = JsonWebEncryption(algorithms=[alg, enc])
    return to_unicode(jwe.serialize_compact(protected, _payload_bytes(payload), _native(key)))


def encode(
    payload: bytes | str | dict[str, Any],
    sign_key: Any,
    sign_alg: str,
    enc_key: Any = None,
    enc_alg: str | None = None,
    enc_enc: str | None = None,
    sign_kid: str | None = None,
    enc_kid: str | None = None,
) -> str:
    """
    Signs `payload` and, when an encryption key is given, encrypts the resulting JWS.
    """
    token = encode_jws(payload, sign_key, sign_alg, kid=sign_kid)
    if enc_key is None:
        return token
    return encode_jwe(
        token,
        enc_key,
        alg=enc_alg or DEFAULT_ENC_ALG,
        enc=enc_enc or DEFAULT_ENC_ENC,
        kid=enc_kid,
        content_type="JWT",
    )


def decode_jws(
    token: str,
    key: Any,
    algorithms: list[str] | None = None,
    allow_none: bool = False,
) -> bytes:
    """
    Verifies a compact JWS and returns its payload.

    Args:
        token: The compact JWS.
        key: Verification key (authlib Key, JWK message, cryptography key or secret bytes).
        algorithms: Accepted algorithms. Defaults to every supported signing algorithm.
        allow_none: Accept an unsecured (`alg=none`) token.

    Raises:
        IntegrityError: If the signature or MAC does not verify, the algorithm is not
            accepted, or the token is malformed.
    """
    alg = get_header(token)["alg"]
    if alg == NONE_ALGORITHM and not allow_none:
        raise IntegrityError("Unsecured token (alg=none) not accepted.")

    accepted = list(algorithms or SIGNING_ALGORITHMS)
    if allow_none:
        accepted.append(NONE_ALGORITHM)

    jws = JsonWebSignature(algorithms=accepted)
    try:
        obj = jws.deserialize_compact(token, None if alg == NONE_ALGORITHM else _native(key))
    except BadSignatureError as e:
        raise IntegrityError("Signature verification failed.") from e
    except (JoseError, ValueError) as e:
        raise IntegrityError(f"Invalid JWS: {e}") from e
    return bytes(obj.payload)


def decode_jwe(token: str, key: Any, algorithms: list[str] | None = None) -> bytes:
    """
    Decrypts a compact JWE and returns its plaintext (often itself a JWS).

    Raises:
        IntegrityError: If decryption or the authentication tag check fails.
    """
    accepted = algorithms or KEY_ENCRYPTION_ALGORITHMS + CONTENT_ENCRYPTION_ALGORITHMS
    jwe = JsonWebEncryption(algorithms=accepted)
    try:
        result = jwe.deserialize_compact(token, _native(key))
    except (JoseError, InvalidTag, ValueError) as e:
        raise IntegrityError(f"Decryption failed: {e}") from e
    return bytes(result["payload"])


def decode(token: str, key: Any, allow_none: bool = False) -> bytes:
    """
    Removes one JOSE layer: decrypts a JWE, or verifies a JWS.
    """
    if is_encrypted(token):
        return decode_jwe(token, key)
    return decode_jws(token, key, allow_none=allow_none)


def payload_claims(payload: bytes | str) -> dict[str, Any]:
    """
    Parses a JWS payload as a JSON object.

    Raises:
        IntegrityError: If the payload is not a JSON object.
    """
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise IntegrityError("Token payload is not valid JSON.") from e
    if not isinstance(data, dict):
        raise IntegrityError("Token payload is not a JSON object.")
    return data


def unverified_claims(token: str) -> dict[str, Any]:
    """
    Reads the claims of a JWS without verifying it, for picking the verification key.
    """
    segments = token.split(".")
    if len(segments) != 3:
        raise IntegrityError("Malformed JWS.")
    try:
        return payload_claims(b64url_decode(segments[1]))
    except ValueError as e:
        raise IntegrityError("Malformed JWS payload.") from e


__all__ = [
    "CONTENT_ENCRYPTION_ALGORITHMS",
    "KEY_ENCRYPTION_ALGORITHMS",
    "NONE_ALGORITHM",
    "SIGNING_ALGORITHMS",
    "decode",
    "decode_jwe",
    "decode_jws",
    "encode",
    "encode_jwe",
    "encode_jws",
    "get_header",
    "is_encrypted",
    "payload_claims",
    "unverified_claims",
]

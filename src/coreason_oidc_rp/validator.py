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
IdTokenValidator component for unwrapping ID Tokens and validating their claims.
"""

import hashlib
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_oidc_rp import jose
from coreason_oidc_rp.exceptions import CoreasonOIDCError, IntegrityError, KeyNotFoundError, OIDCError
from coreason_oidc_rp.keys import USE_ENCRYPTION, USE_SIGNATURE, kty_for_algorithm, select_key, self_issued_subjects
from coreason_oidc_rp.messages import JWK, SELF_ISSUED_ISSUER, ClientInformation, IdToken
from coreason_oidc_rp.utils.encoding import b64url_encode
from coreason_oidc_rp.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

_HASHES = {
    "256": hashlib.sha256,
    "384": hashlib.sha384,
    "512": hashlib.sha512,
}


def compute_hash_claim(value: str, alg: str) -> str:
    """
    Computes an `at_hash` / `c_hash` value.

    The hash function is the one of the ID Token's signing algorithm (SHA-256 for
    `*256`, and so on). The left half of the digest of the ASCII value is returned as
    base64url.

    Args:
        value: The access token or authorization code.
        alg: The `alg` header of the ID Token.
    """
    hash_func = _HASHES.get(alg[-3:], hashlib.sha256)
    digest = hash_func(value.encode("ascii")).digest()
    return b64url_encode(digest[: len(digest) // 2])


def decrypt_token(token: str, rp_keys: Sequence[JWK] | None) -> str:
    """
    Removes the JWE layer of `token` with the RP key its header designates.

    Raises:
        KeyResolutionError: If no RP key fits.
        IntegrityError: If decryption fails.
    """
    header = jose.get_header(token)
    if not rp_keys:
        raise KeyNotFoundError("No RP key available to decrypt the token.")
    key = select_key(rp_keys, header.get("kid"), USE_ENCRYPTION, kty_for_algorithm(header["alg"]))
    return jose.decode_jwe(token, key).decode("utf-8")


def verify_token(
    token: str,
    provider_keys: Sequence[JWK] | None = None,
    client_secret: str | None = None,
    expected_alg: str | None = None,
) -> dict[str, Any]:
    """
    Verifies a compact JWS and returns its claims.

    HMAC tokens are checked with the client secret, self-issued tokens with their
    embedded `sub_jwk` (whose thumbprint must match `sub`), and every other token with
    the OP key chosen by the Key Manager.
    Unsecured tokens are accepted only when `expected_alg` is "none".

    Raises:
        IntegrityError: If the signature is invalid or the algorithm is not the expected one.
        KeyResolutionError: If no verification key can be chosen.
    """
    header = jose.get_header(token)
    alg = header["alg"]
    if expected_alg is not None and alg != expected_alg:
        raise IntegrityError(f"Unexpected signing algorithm {alg}, expected {expected_alg}.")

    if alg == jose.NONE_ALGORITHM:
        payload = jose.decode_jws(token, None, allow_none=expected_alg == jose.NONE_ALGORITHM)
        return jose.payload_claims(payload)

    unverified = jose.unverified_claims(token)
    key: Any
    if unverified.get("iss") == SELF_ISSUED_ISSUER and isinstance(unverified.get("sub_jwk"), dict):
        key = JWK.from_dict(unverified["sub_jwk"], validate=False)
        if "sub" in unverified and unverified["sub"] not in self_issued_subjects(key):
            logger.warning("Self-issued token sub does not match its sub_jwk")
            raise IntegrityError("The sub of the self-issued token does not match its sub_jwk.")
    elif alg.startswith("HS"):
        if not client_secret:
            raise KeyNotFoundError("A client secret is required to verify an HMAC signed token.")
        key = client_secret.encode("utf-8")
    else:
        key = select_key(provider_keys or [], header.get("kid"), USE_SIGNATURE, kty_for_algorithm(alg))

    return jose.payload_claims(jose.decode_jws(token, key, algorithms=[alg]))


class IdTokenValidator:
    """
    Unwraps ID Tokens (decrypt, then verify) and validates their claims.

    Attributes:
        clock_skew_leeway (int): Seconds tolerated past `exp`.
        max_id_token_age (int): Maximum age of `iat` in seconds.
    """

    def __init__(
        self,
        clock_skew_leeway: int = 600,
        max_id_token_age: int = 86400,
        pii_salt: SecretStr | None = None,
    ) -> None:
        """
        Initialize the IdTokenValidator.

        Args:
            clock_skew_leeway: Acceptable clock skew on `exp` in seconds. Defaults to 600.
            max_id_token_age: Maximum accepted age of `iat` in seconds. Defaults to 86400.
            pii_salt: Salt used to anonymize subjects in logs.
        """
        self.clock_skew_leeway = clock_skew_leeway
        self.max_id_token_age = max_id_token_age
        self.pii_salt = pii_salt or SecretStr("")

    def _anonymize(self, value: str | None) -> str:
        return anonymize(value or "unknown", self.pii_salt.get_secret_value())

    def get_id_token(
        self,
        token: str,
        provider_keys: Sequence[JWK] | None = None,
        client_secret: str | None = None,
        rp_keys: Sequence[JWK] | None = None,
        expected_alg: str | None = None,
    ) -> IdToken:
        """
        Decrypts (when encrypted), verifies and deserializes an ID Token.

        Emits an OpenTelemetry span `get_id_token`.

        Args:
            token: The compact ID Token.
            provider_keys: The OP keys of the current ProviderMetadata.
            client_secret: The client secret, for HMAC signed tokens.
            rp_keys: RP private keys, for encrypted tokens.
            expected_alg: The registered `id_token_signed_response_alg`, if any.

        Returns:
            IdToken: The validated claim set (presence rules only).

        Raises:
            IntegrityError: If decryption or signature verification fails.
            KeyResolutionError: If no key, or more than one candidate key, is available.
            MessageValidationError: If a required claim is missing.
        """
        with tracer.start_as_current_span("get_id_token") as span:
            try:
                if jose.is_encrypted(token):
                    span.add_event("decrypting_id_token")
                    token = decrypt_token(token, rp_keys)

                claims = verify_token(token, provider_keys, client_secret, expected_alg)
                id_token = IdToken.from_dict(claims)

                span.set_attribute("enduser.id", self._anonymize(id_token.sub))
                span.set_status(Status(StatusCode.OK))
                return id_token
            except CoreasonOIDCError as e:
                logger.warning(f"ID Token rejected: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def validate_id_token(
        self,
        id_token: IdToken,
        client_information: ClientInformation,
        issuer: str,
        nonce: str | None = None,
    ) -> None:
        """
        Validates the claims of an ID Token, in order: issuer, audience, authorized
        party presence, authorized party value, expiry, age and nonce.

        Emits an OpenTelemetry span `validate_id_token`.

        Args:
            id_token: The ID Token claims.
            client_information: The registered client.
            issuer: The expected issuer.
            nonce: The nonce sent in the authorization request, if any.

        Raises:
            OIDCError: With a message naming the first failed check.
        """
        with tracer.start_as_current_span("validate_id_token") as span:
            try:
                self._check_claims(id_token, client_information, issuer, nonce)
            except OIDCError as e:
                logger.warning(f"ID Token validation failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            user_hash = self._anonymize(id_token.sub)
            logger.info(f"ID Token validated for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))

    def _check_claims(
        self,
        id_token: IdToken,
        client_information: ClientInformation,
        issuer: str,
        nonce: str | None,
    ) -> None:
        if (id_token.iss or "").rstrip("/") != issuer.rstrip("/"):
            raise OIDCError("Wrong issuer in id token.")

        audience = id_token.aud or []
        client_id = client_information.client_id

        if not id_token.is_self_issued and client_id not in audience:
            raise OIDCError("Wrong audience for the released id token.")

        if len(audience) > 1 and id_token.azp is None:
            raise OIDCError("Multiple audience but no authorized party specified.")

        if id_token.azp is not None and id_token.azp != client_id:
            raise OIDCError("The authorized party does not match client_id.")

        now = datetime.now(UTC)

        if id_token.exp is not None and id_token.exp < now - timedelta(seconds=self.clock_skew_leeway):
            raise OIDCError("The token is expired.")

        if id_token.iat is not None and id_token.iat < now - timedelta(seconds=self.max_id_token_age):
            raise OIDCError("The token has been issued too long ago.")

        if nonce is not None and id_token.nonce != nonce:
            raise OIDCError("Wrong nonce value in token.")

    def validate_hash_claims(
        self,
        id_token: IdToken,
        alg: str,
        code: str | None = None,
        access_token: str | None = None,
    ) -> None:
        """
        Checks the `c_hash` / `at_hash` bindings of an ID Token returned together with a
        code and/or an access token.

        Raises:
            OIDCError: "Wrong c_hash for the released id token." or
                "Wrong at_hash for the released id token."
        """
        if code is not None and id_token.c_hash != compute_hash_claim(code, alg):
            raise OIDCError("Wrong c_hash for the released id token.")

        if access_token is not None and id_token.at_hash != compute_hash_claim(access_token, alg):
            raise OIDCError("Wrong at_hash for the released id token.")

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
Key Manager: builds JWKs from the RP's certificates and picks verification or
decryption keys out of a JWK Set.

Key sets are treated as immutable snapshots. Nothing here caches a selected key; a
rotated OP key set is picked up by fetching a fresh `ProviderMetadata`.
"""

import base64
from collections.abc import Sequence
from typing import Any

from authlib.jose import ECKey, Key, RSAKey
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from coreason_oidc_rp.exceptions import AmbiguousKeyError, IntegrityError, KeyNotFoundError
from coreason_oidc_rp.messages import JWK, JWKSet
from coreason_oidc_rp.utils.encoding import b64url_encode
from coreason_oidc_rp.utils.logger import logger

USE_SIGNATURE = "sig"
USE_ENCRYPTION = "enc"

_KTY_BY_ALG_PREFIX = {
    "HS": "oct",
    "RS": "RSA",
    "PS": "RSA",
    "ES": "EC",
}


def native_key(raw: Any) -> Key:
    """
    Wraps a cryptography RSA or EC key object into an authlib key.

    Raises:
        ValueError: If the key type is not supported.
    """
    for key_class in (RSAKey, ECKey):
        if key_class.validate_raw_key(raw):
            return key_class.import_key(raw)
    raise ValueError(f"Unsupported key type: {type(raw).__name__}")


def certificate_thumbprint(certificate: x509.Certificate) -> str:
    """SHA-1 fingerprint of the DER certificate, upper-case hex."""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()  # noqa: S303


def self_issued_subject(certificate: x509.Certificate) -> str:
    """Subject of a self-issued ID Token: base64 of the certificate thumbprint text."""
    return base64.b64encode(certificate_thumbprint(certificate).encode("utf-8")).decode("ascii")


def self_issued_subjects(jwk: JWK) -> list[str]:
    """
    Subjects a self-issued ID Token signed by `jwk` (its `sub_jwk`) may carry.

    The base64url JWK thumbprint is always accepted. When the key carries a certificate
    in `x5c`, the certificate subject is accepted too, provided the certificate holds the
    same key.

    Raises:
        IntegrityError: If `x5c` is unreadable or certifies another key.
    """
    thumbprint = jwk.to_native().thumbprint()
    subjects = [thumbprint]
    if jwk.x5c:
        try:
            certificate = x509.load_der_x509_certificate(base64.b64decode(jwk.x5c[0]))
            certified = native_key(certificate.public_key()).thumbprint()
        except ValueError as e:
            raise IntegrityError("Unreadable x5c certificate in sub_jwk.") from e
        if certified != thumbprint:
            logger.warning("Self-issued sub_jwk does not match its x5c certificate")
            raise IntegrityError("The sub_jwk certificate does not hold the sub_jwk key.")
        subjects.append(self_issued_subject(certificate))
    return subjects


def jwk_from_certificate(
    certificate: x509.Certificate,
    private_key: Any = None,
    use: str = USE_SIGNATURE,
    kid: str | None = None,
) -> JWK:
    """
    Builds the JWK describing a certificate's key.

    Args:
        certificate: The X.509 certificate.
        private_key: The matching cryptography private key. When given, the private
            parameters are included in the JWK.
        use: "sig" or "enc".
        kid: Key id for the JWK.

    Returns:
        JWK: The key, carrying `x5c` and `x5t` for the certificate.
    """
    is_private = private_key is not None
    key = native_key(private_key if is_private else certificate.public_key())
    jwk = JWK.from_native(key, use=use, kid=kid, is_private=is_private)
    der = certificate.public_bytes(serialization.Encoding.DER)
    return jwk.model_copy(
        update={
            "x5c": [base64.b64encode(der).decode("ascii")],
            "x5t": b64url_encode(certificate.fingerprint(hashes.SHA1())),  # noqa: S303
        }
    )


def build_jwk_set(
    signing: Sequence[x509.Certificate],
    encrypting: Sequence[x509.Certificate] = (),
) -> JWKSet:
    """
    Builds the JWK Set the RP publishes at its `jwks_uri`.

    Keys are labelled "Signing Certificate N" and "Encoding Certificate N", each
    counter starting at 1. Only public parameters are included.
    """
    keys = [
        jwk_from_certificate(cert, use=USE_SIGNATURE, kid=f"Signing Certificate {index}")
        for index, cert in enumerate(signing, start=1)
    ]
    keys.extend(
        jwk_from_certificate(cert, use=USE_ENCRYPTION, kid=f"Encoding Certificate {index}")
        for index, cert in enumerate(encrypting, start=1)
    )
    return JWKSet(keys=keys)


def kty_for_algorithm(alg: str) -> str:
    """
    Key type needed by a JWS or JWE algorithm.

    Raises:
        IntegrityError: If the algorithm is not one the RP accepts.
    """
    if alg.startswith("RSA"):
        return "RSA"
    if alg.startswith("ECDH"):
        return "EC"
    if alg == "dir" or (alg.startswith("A") and alg.endswith("KW")):
        return "oct"
    kty = _KTY_BY_ALG_PREFIX.get(alg[:2])
    if kty is None:
        logger.warning(f"Token header names unsupported algorithm {alg}")
        raise IntegrityError(f"Unsupported algorithm {alg}.")
    return kty


def select_key(keys: Sequence[JWK], kid: str | None, use: str, kty: str) -> JWK:
    """
    Chooses the key that verifies or decrypts a token.

    With a `kid`, the key with exactly that id is returned; when several keys share it,
    the one with the requested `use`. Without a `kid`, the single key matching both `use`
    and `kty` is returned.

    Args:
        keys: The current key set snapshot.
        kid: The `kid` header of the token, if any.
        use: Required key use ("sig" or "enc").
        kty: Required key type.

    Returns:
        JWK: The selected key. The key set is left untouched.

    Raises:
        KeyNotFoundError: If no key matches.
        AmbiguousKeyError: If more than one key matches.
    """
    if kid is not None:
        by_kid = [key for key in keys if key.kid == kid]
        if len(by_kid) > 1:
            by_kid = [key for key in by_kid if key.use == use] or by_kid
        if not by_kid:
            logger.warning(f"No key found for kid {kid}")
            raise KeyNotFoundError(f"No key found with kid {kid}.")
        if len(by_kid) > 1:
            logger.warning(f"Token kid {kid} matches {len(by_kid)} keys (use={use})")
            raise AmbiguousKeyError(f"Multiple keys share kid {kid} and use {use}.")
        return by_kid[0]

    candidates = [key for key in keys if key.use == use and key.kty == kty]
    if not candidates:
        raise KeyNotFoundError(f"No key found for use {use} and kty {kty}.")
    if len(candidates) > 1:
        logger.warning(f"Token without kid matches {len(candidates)} keys (use={use}, kty={kty})")
        raise AmbiguousKeyError(f"Multiple keys match use {use} and kty {kty} and the token has no kid.")
    return candidates[0]


__all__ = [
    "USE_ENCRYPTION",
    "USE_SIGNATURE",
    "build_jwk_set",
    "certificate_thumbprint",
    "jwk_from_certificate",
    "kty_for_algorithm",
    "native_key",
    "select_key",
    "self_issued_subject",
    "self_issued_subjects",
]

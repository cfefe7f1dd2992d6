# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

import base64
import hashlib
import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from conftest import CLIENT_ID, CLIENT_SECRET, ISSUER, claims_for, make_jwk

from coreason_oidc_rp import jose
from coreason_oidc_rp.exceptions import (
    AmbiguousKeyError,
    IntegrityError,
    KeyNotFoundError,
    MessageValidationError,
    OIDCError,
)
from coreason_oidc_rp.messages import JWK, ClientInformation, IdToken
from coreason_oidc_rp.utils.encoding import b64url_encode
from coreason_oidc_rp.validator import IdTokenValidator, compute_hash_claim, decrypt_token, verify_token


@pytest.fixture
def validator() -> IdTokenValidator:
    return IdTokenValidator()


def _sign(claims: dict[str, Any], key: JWK) -> str:
    return jose.encode_jws(claims, key, "RS256", kid=key.kid)


def _tamper_payload(token: str, **changes: Any) -> str:
    header, _, signature = token.split(".")
    claims = {**jose.unverified_claims(token), **changes}
    payload = jose.encode_jws(claims, None, jose.NONE_ALGORITHM).split(".")[1]
    return ".".join([header, payload, signature])


def _id_token(**overrides: Any) -> IdToken:
    return IdToken.from_dict(claims_for(**overrides), validate=False)


# get_id_token: decryption, signature and presence


def test_get_id_token_success(validator: IdTokenValidator, op_rsa_key: JWK) -> None:
    token = _sign(claims_for(), op_rsa_key)

    id_token = validator.get_id_token(token, [op_rsa_key.public()])

    assert id_token.iss == ISSUER
    assert id_token.sub == "user-123"
    assert id_token.aud == [CLIENT_ID]


def test_get_id_token_decrypts_then_verifies(validator: IdTokenValidator, op_rsa_key: JWK, rp_enc_key: JWK) -> None:
    token = jose.encode(
        claims_for(),
        op_rsa_key,
        "RS256",
        enc_key=rp_enc_key.public(),
        enc_alg="RSA1_5",
        enc_enc="A128CBC-HS256",
        sign_kid=op_rsa_key.kid,
        enc_kid=rp_enc_key.kid,
    )

    id_token = validator.get_id_token(token, [op_rsa_key.public()], rp_keys=[rp_enc_key])
    assert id_token.sub == "user-123"


def test_get_id_token_encrypted_without_rp_keys(validator: IdTokenValidator, op_rsa_key: JWK, rp_enc_key: JWK) -> None:
    token = jose.encode(claims_for(), op_rsa_key, "RS256", enc_key=rp_enc_key.public(), enc_alg="RSA1_5")

    with pytest.raises(KeyNotFoundError):
        validator.get_id_token(token, [op_rsa_key.public()])


@pytest.mark.parametrize("missing", ["iat", "sub", "aud", "exp"])
def test_get_id_token_missing_claim(validator: IdTokenValidator, op_rsa_key: JWK, missing: str) -> None:
    token = _sign(claims_for(**{missing: None}), op_rsa_key)

    with pytest.raises(MessageValidationError, match=f"Missing {missing} required parameter."):
        validator.get_id_token(token, [op_rsa_key.public()])


@pytest.mark.parametrize(
    "changes",
    [{"aud": ["attacker"]}, {"iss": "https://evil.example.com"}, {"sub": "someone-else"}],
)
def test_get_id_token_tampered_payload(validator: IdTokenValidator, op_rsa_key: JWK, changes: dict[str, Any]) -> None:
    token = _tamper_payload(_sign(claims_for(), op_rsa_key), **changes)

    with pytest.raises(IntegrityError):
        validator.get_id_token(token, [op_rsa_key.public()])


def test_get_id_token_tampered_signature(validator: IdTokenValidator, op_rsa_key: JWK) -> None:
    header, payload, signature = _sign(claims_for(), op_rsa_key).split(".")
    forged = ".".join([header, payload, ("A" if signature[0] != "A" else "B") + signature[1:]])

    with pytest.raises(IntegrityError):
        validator.get_id_token(forged, [op_rsa_key.public()])


def test_get_id_token_ambiguous_keys(validator: IdTokenValidator, op_rsa_key: JWK) -> None:
    token = jose.encode_jws(claims_for(), op_rsa_key, "RS256")
    keys = [op_rsa_key.public(), make_jwk("RSA", "op-rsa-2").public()]

    with pytest.raises(AmbiguousKeyError):
        validator.get_id_token(token, keys)


def test_get_id_token_hs256_with_client_secret(validator: IdTokenValidator) -> None:
    token = jose.encode_jws(claims_for(), CLIENT_SECRET.encode(), "HS256")

    assert validator.get_id_token(token, client_secret=CLIENT_SECRET).sub == "user-123"
    with pytest.raises(KeyNotFoundError):
        validator.get_id_token(token)
    with pytest.raises(IntegrityError):
        validator.get_id_token(token, client_secret="a-different-client-secret-value")


def test_get_id_token_none_only_when_expected(validator: IdTokenValidator) -> None:
    token = jose.encode_jws(claims_for(), None, jose.NONE_ALGORITHM)

    with pytest.raises(IntegrityError):
        validator.get_id_token(token)
    assert validator.get_id_token(token, expected_alg="none").sub == "user-123"


def test_get_id_token_unexpected_alg(validator: IdTokenValidator, op_rsa_key: JWK) -> None:
    token = _sign(claims_for(), op_rsa_key)

    with pytest.raises(IntegrityError, match="expected ES256"):
        validator.get_id_token(token, [op_rsa_key.public()], expected_alg="ES256")


@pytest.mark.parametrize("alg", ["EdDSA", "XX999"])
def test_get_id_token_unsupported_alg(validator: IdTokenValidator, op_rsa_key: JWK, alg: str) -> None:
    _, payload, signature = _sign(claims_for(), op_rsa_key).split(".")
    forged = ".".join([b64url_encode(json.dumps({"alg": alg})), payload, signature])

    with pytest.raises(IntegrityError, match=f"Unsupported algorithm {alg}"):
        validator.get_id_token(forged, provider_keys=[op_rsa_key.public()])


def test_get_id_token_non_string_alg(validator: IdTokenValidator, op_rsa_key: JWK) -> None:
    _, payload, signature = _sign(claims_for(), op_rsa_key).split(".")
    forged = ".".join([b64url_encode(json.dumps({"alg": 256})), payload, signature])

    with pytest.raises(IntegrityError, match="Malformed JOSE token header"):
        validator.get_id_token(forged, provider_keys=[op_rsa_key.public()])


def test_get_id_token_es256(validator: IdTokenValidator, op_ec_key: JWK, op_rsa_key: JWK) -> None:
    token = jose.encode_jws(claims_for(), op_ec_key, "ES256")
    keys = [op_rsa_key.public(), op_ec_key.public()]

    assert validator.get_id_token(token, keys).sub == "user-123"


# validate_id_token: claim checks, in order


def test_validate_id_token_success(validator: IdTokenValidator, client_information: ClientInformation) -> None:
    validator.validate_id_token(_id_token(), client_information, ISSUER, nonce="NONCE123")


def test_issuer_compared_without_trailing_slash(
    validator: IdTokenValidator, client_information: ClientInformation
) -> None:
    validator.validate_id_token(_id_token(iss=f"{ISSUER}/"), client_information, ISSUER)
    validator.validate_id_token(_id_token(), client_information, f"{ISSUER}/")


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"iss": "https://evil.example.com"}, "Wrong issuer in id token."),
        ({"aud": ["someone-else"]}, "Wrong audience for the released id token."),
        ({"aud": [CLIENT_ID, "other"]}, "Multiple audience but no authorized party specified."),
        ({"aud": [CLIENT_ID, "other"], "azp": "other"}, "The authorized party does not match client_id."),
        ({"azp": "other"}, "The authorized party does not match client_id."),
        ({"nonce": "WRONG"}, "Wrong nonce value in token."),
    ],
)
def test_validate_id_token_failures(
    validator: IdTokenValidator,
    client_information: ClientInformation,
    overrides: dict[str, Any],
    message: str,
) -> None:
    with pytest.raises(OIDCError) as exc_info:
        validator.validate_id_token(_id_token(**overrides), client_information, ISSUER, nonce="NONCE123")

    assert str(exc_info.value) == message


def test_multiple_audience_with_matching_azp(
    validator: IdTokenValidator, client_information: ClientInformation
) -> None:
    validator.validate_id_token(_id_token(aud=[CLIENT_ID, "other"], azp=CLIENT_ID), client_information, ISSUER)


def test_expired_token(validator: IdTokenValidator, client_information: ClientInformation) -> None:
    now = int(datetime.now(UTC).timestamp())

    validator.validate_id_token(_id_token(exp=now - 300), client_information, ISSUER)
    with pytest.raises(OIDCError, match="The token is expired."):
        validator.validate_id_token(_id_token(exp=now - 700), client_information, ISSUER)


def test_token_issued_too_long_ago(validator: IdTokenValidator, client_information: ClientInformation) -> None:
    old = int((datetime.now(UTC) - timedelta(hours=25)).timestamp())

    with pytest.raises(OIDCError, match="The token has been issued too long ago."):
        validator.validate_id_token(_id_token(iat=old), client_information, ISSUER)


def test_custom_leeway_and_age(client_information: ClientInformation) -> None:
    strict = IdTokenValidator(clock_skew_leeway=0, max_id_token_age=60)
    now = int(datetime.now(UTC).timestamp())

    with pytest.raises(OIDCError, match="The token is expired."):
        strict.validate_id_token(_id_token(exp=now - 5), client_information, ISSUER)
    with pytest.raises(OIDCError, match="issued too long ago"):
        strict.validate_id_token(_id_token(iat=now - 120), client_information, ISSUER)


def test_nonce_not_checked_when_not_supplied(
    validator: IdTokenValidator, client_information: ClientInformation
) -> None:
    validator.validate_id_token(_id_token(nonce="anything"), client_information, ISSUER)


def test_issuer_checked_before_audience(validator: IdTokenValidator, client_information: ClientInformation) -> None:
    with pytest.raises(OIDCError, match="Wrong issuer in id token."):
        validator.validate_id_token(
            _id_token(iss="https://evil.example.com", aud=["x"]), client_information, ISSUER
        )


# c_hash / at_hash


def test_compute_hash_claim_rs256() -> None:
    digest = hashlib.sha256(b"some-code").digest()
    expected = base64.urlsafe_b64encode(digest[:16]).decode().rstrip("=")
    assert compute_hash_claim("some-code", "RS256") == expected


def test_compute_hash_claim_uses_alg_size() -> None:
    digest = hashlib.sha512(b"token").digest()
    expected = base64.urlsafe_b64encode(digest[:32]).decode().rstrip("=")
    assert compute_hash_claim("token", "ES512") == expected


def test_validate_hash_claims(validator: IdTokenValidator) -> None:
    id_token = _id_token(
        c_hash=compute_hash_claim("the-code", "RS256"),
        at_hash=compute_hash_claim("the-access-token", "RS256"),
    )

    validator.validate_hash_claims(id_token, "RS256", code="the-code", access_token="the-access-token")

    with pytest.raises(OIDCError, match="Wrong c_hash for the released id token."):
        validator.validate_hash_claims(id_token, "RS256", code="another-code")
    with pytest.raises(OIDCError, match="Wrong at_hash for the released id token."):
        validator.validate_hash_claims(id_token, "RS256", access_token="another-token")


# helpers


def test_decrypt_token_selects_enc_key(op_rsa_key: JWK, rp_enc_key: JWK) -> None:
    token = jose.encode_jwe(b"inner", rp_enc_key.public(), alg="RSA1_5")
    rp_keys = [JWK.from_dict({**op_rsa_key.to_dict()}), rp_enc_key]

    assert decrypt_token(token, rp_keys) == "inner"


def test_verify_token_self_issued_uses_sub_jwk(op_rsa_key: JWK) -> None:
    claims = {"iss": "https://self-issued.me", "sub_jwk": op_rsa_key.public().to_dict()}
    token = jose.encode_jws(claims, op_rsa_key, "RS256")

    assert verify_token(token)["iss"] == "https://self-issued.me"


def test_verify_token_self_issued_sub_bound_to_sub_jwk(op_rsa_key: JWK) -> None:
    thumbprint = op_rsa_key.public().to_native().thumbprint()
    claims = {"iss": "https://self-issued.me", "sub": thumbprint, "sub_jwk": op_rsa_key.public().to_dict()}

    assert verify_token(jose.encode_jws(claims, op_rsa_key, "RS256"))["sub"] == thumbprint

    forged = jose.encode_jws({**claims, "sub": "someone-else"}, op_rsa_key, "RS256")
    with pytest.raises(IntegrityError, match="does not match its sub_jwk"):
        verify_token(forged)

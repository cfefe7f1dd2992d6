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
Protocol messages exchanged between the Relying Party and an OpenID Provider.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Self
from urllib.parse import urlparse

from authlib.jose import JsonWebKey, Key
from pydantic import Field, JsonValue

from coreason_oidc_rp.codec import Message, ResponseError
from coreason_oidc_rp.exceptions import MessageValidationError

SELF_ISSUED_ISSUER = "https://self-issued.me"

__all__ = [
    "SELF_ISSUED_ISSUER",
    "Address",
    "AuthCodeResponse",
    "AuthenticatedMessage",
    "AuthorizationRequest",
    "ClaimData",
    "ClaimsRequest",
    "ClientInformation",
    "ClientMetadata",
    "ClientSecretJWT",
    "IdToken",
    "ImplicitResponse",
    "JWK",
    "JWKSet",
    "MessageScope",
    "ProviderMetadata",
    "ResponseError",
    "ResponseMode",
    "ResponseType",
    "ThirdPartyLoginRequest",
    "TokenRequest",
    "TokenResponse",
    "UserInfoRequest",
    "UserInfoResponse",
    "WebFingerLink",
    "WebFingerResponse",
]


class ResponseType(StrEnum):
    CODE = "code"
    ID_TOKEN = "id_token"
    TOKEN = "token"


class MessageScope(StrEnum):
    OPENID = "openid"
    PROFILE = "profile"
    EMAIL = "email"
    ADDRESS = "address"
    PHONE = "phone"
    OFFLINE_ACCESS = "offline_access"


class ResponseMode(StrEnum):
    QUERY = "query"
    FRAGMENT = "fragment"
    FORM_POST = "form_post"


class ClaimData(Message):
    """A single requested claim, optionally essential or constrained to values."""

    essential: bool | None = None
    value: str | None = None
    values: list[str] | None = None


class ClaimsRequest(Message):
    """The `claims` request parameter, split by the place the claims are released."""

    userinfo: dict[str, ClaimData] | None = None
    id_token: dict[str, ClaimData] | None = None


class Address(Message):
    formatted: str | None = None
    street_address: str | None = None
    locality: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country: str | None = None


class AuthorizationRequest(Message):
    """
    Authorization request sent to the OP, also used as the claim set of a request object.
    """

    iss: str | None = None
    aud: str | None = None
    scope: list[str] | None = None
    response_type: list[ResponseType] | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    state: str | None = None
    nonce: str | None = None
    response_mode: ResponseMode | None = None
    request: str | None = None
    request_uri: str | None = None
    display: str | None = None
    prompt: str | None = None
    max_age: int | None = None
    ui_locales: str | None = None
    claims_locales: str | None = None
    id_token_hint: str | None = None
    login_hint: str | None = None
    acr_values: str | None = None
    claims: ClaimsRequest | None = None

    def validate_message(self) -> None:
        if not self.scope:
            raise MessageValidationError("Missing scope required parameter")
        if MessageScope.OPENID.value not in self.scope:
            raise MessageValidationError("Missing required openid scope")
        if not self.response_type:
            raise MessageValidationError("Missing response_type required parameter")
        if self.client_id is None:
            raise MessageValidationError("Missing client_id required parameter")
        if self.redirect_uri is None:
            raise MessageValidationError("Missing redirect_uri required parameter")


class ThirdPartyLoginRequest(Message):
    """Login initiated by a third party through the RP's initiate_login_uri."""

    required_fields = ("iss",)

    iss: str | None = None
    login_hint: str | None = None
    target_link_uri: str | None = None


class AuthCodeResponse(Message):
    required_fields = ("code",)

    code: str | None = None
    state: str | None = None
    scope: list[str] | None = None
    id_token: str | None = None
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None


class ImplicitResponse(Message):
    required_fields = ("id_token", "state")

    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: list[str] | None = None
    state: str | None = None
    id_token: str | None = None
    code: str | None = None


class AuthenticatedMessage(Message):
    """Fields added to a request by client authentication."""

    client_id: str | None = None
    client_secret: str | None = None
    client_assertion_type: str | None = None
    client_assertion: str | None = None


class TokenRequest(AuthenticatedMessage):
    required_fields = ("grant_type",)

    grant_type: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    state: str | None = None
    scope: list[str] | None = None
    refresh_token: str | None = None


class TokenResponse(Message):
    required_fields = ("access_token", "token_type")

    access_token: str | None = None
    token_type: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    id_token: str | None = None
    scope: list[str] | None = None


class ClientSecretJWT(Message):
    """Claim set of a client_secret_jwt / private_key_jwt client assertion."""

    required_fields = ("iss", "sub", "aud", "jti", "exp")

    iss: str | None = None
    sub: str | None = None
    aud: str | None = None
    jti: str | None = None
    exp: datetime | None = None
    iat: datetime | None = None


class JWK(Message):
    """
    A JSON Web Key as published in a JWK Set.

    Conversion to and from authlib key objects goes through `to_native` / `from_native`.
    """

    required_fields = ("kty",)

    kty: str | None = None
    use: str | None = None
    kid: str | None = None
    alg: str | None = None
    key_ops: list[str] | None = None
    crv: str | None = None
    x: str | None = None
    y: str | None = None
    n: str | None = None
    e: str | None = None
    d: str | None = None
    p: str | None = None
    q: str | None = None
    dp: str | None = None
    dq: str | None = None
    qi: str | None = None
    k: str | None = None
    x5c: list[str] | None = None
    x5t: str | None = None
    x5u: str | None = None

    def validate_message(self) -> None:
        if self.use is None:
            raise MessageValidationError("The use parameter is missing in key.")
        super().validate_message()

    @property
    def is_private(self) -> bool:
        return self.d is not None or self.k is not None

    def to_native(self) -> Key:
        """
        Returns the authlib key object for this JWK.

        Raises:
            MessageValidationError: If the key material cannot be imported.
        """
        try:
            return JsonWebKey.import_key(self.to_dict())
        except (ValueError, KeyError) as e:
            raise MessageValidationError(f"Invalid key material for kid {self.kid}: {e}") from e

    def public(self) -> "JWK":
        """Returns a copy with every private parameter removed."""
        return self.model_copy(update={"d": None, "p": None, "q": None, "dp": None, "dq": None, "qi": None, "k": None})

    @classmethod
    def from_native(cls, key: Key, use: str | None = None, kid: str | None = None, is_private: bool = False) -> Self:
        data: dict[str, Any] = dict(key.as_dict(is_private=is_private))
        if use:
            data["use"] = use
        if kid:
            data["kid"] = kid
        return cls.from_dict(data, validate=use is not None)


class JWKSet(Message):
    keys: list[JWK] = Field(default_factory=list)

    def validate_message(self) -> None:
        for key in self.keys:
            key.validate_message()


class ProviderMetadata(Message):
    """
    OP discovery document, plus the keys fetched from its `jwks_uri`.
    """

    required_fields = ("issuer",)

    issuer: str | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    jwks_uri: str | None = None
    registration_endpoint: str | None = None
    end_session_endpoint: str | None = None
    check_session_iframe: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    response_modes_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    acr_values_supported: list[str] | None = None
    subject_types_supported: list[str] | None = None
    id_token_signing_alg_values_supported: list[str] | None = None
    id_token_encryption_alg_values_supported: list[str] | None = None
    id_token_encryption_enc_values_supported: list[str] | None = None
    userinfo_signing_alg_values_supported: list[str] | None = None
    userinfo_encryption_alg_values_supported: list[str] | None = None
    userinfo_encryption_enc_values_supported: list[str] | None = None
    request_object_signing_alg_values_supported: list[str] | None = None
    request_object_encryption_alg_values_supported: list[str] | None = None
    request_object_encryption_enc_values_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    token_endpoint_auth_signing_alg_values_supported: list[str] | None = None
    display_values_supported: list[str] | None = None
    claim_types_supported: list[str] | None = None
    claims_supported: list[str] | None = None
    service_documentation: str | None = None
    claims_locales_supported: list[str] | None = None
    ui_locales_supported: list[str] | None = None
    claims_parameter_supported: bool | None = None
    request_parameter_supported: bool | None = None
    request_uri_parameter_supported: bool | None = None
    require_request_uri_registration: bool | None = None
    op_policy_uri: str | None = None
    op_tos_uri: str | None = None
    version: str | None = None
    keys: list[JWK] | None = None


class ClientMetadata(Message):
    """
    Client metadata submitted to the OP registration endpoint.
    """

    redirect_uris: list[str] | None = None
    response_types: list[str] | None = None
    grant_types: list[str] | None = None
    application_type: str | None = None
    contacts: list[str] | None = None
    client_name: str | None = None
    logo_uri: str | None = None
    client_uri: str | None = None
    policy_uri: str | None = None
    tos_uri: str | None = None
    jwks_uri: str | None = None
    jwks: dict[str, JsonValue] | None = None
    sector_identifier_uri: str | None = None
    subject_type: str | None = None
    id_token_signed_response_alg: str | None = None
    id_token_encrypted_response_alg: str | None = None
    id_token_encrypted_response_enc: str | None = None
    userinfo_signed_response_alg: str | None = None
    userinfo_encrypted_response_alg: str | None = None
    userinfo_encrypted_response_enc: str | None = None
    request_object_signing_alg: str | None = None
    request_object_encryption_alg: str | None = None
    request_object_encryption_enc: str | None = None
    token_endpoint_auth_method: str | None = None
    token_endpoint_auth_signing_alg: str | None = None
    default_max_age: int | None = None
    require_auth_time: bool | None = None
    default_acr_values: list[str] | None = None
    initiate_login_uri: str | None = None
    request_uris: list[str] | None = None


# Grant type each response type needs, per OIDC Dynamic Client Registration section 2
_GRANT_FOR_RESPONSE_TYPE = {
    ResponseType.CODE.value: "authorization_code",
    ResponseType.ID_TOKEN.value: "implicit",
    ResponseType.TOKEN.value: "implicit",
}


class ClientInformation(ClientMetadata):
    """
    Client information returned by the OP after registration.

    `client_secret_expires_at` of `0` (never expires) decodes to `None`.
    """

    client_id: str | None = None
    client_secret: str | None = None
    client_id_issued_at: datetime | None = None
    client_secret_expires_at: datetime | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None

    def validate_message(self, sector_identifier_uris: list[str] | None = None) -> None:
        """
        Checks the registration invariants.

        Args:
            sector_identifier_uris: The JSON array served at `sector_identifier_uri`, when fetched.

        Raises:
            MessageValidationError: If any invariant is broken.
        """
        if (
            self.redirect_uris is not None
            and self.response_types is not None
            and len(self.redirect_uris) != len(self.response_types)
        ):
            raise MessageValidationError("The redirect_uris do not match response_types.")

        if self.redirect_uris is not None and self.sector_identifier_uri is not None and sector_identifier_uris is not None:
            for uri in self.redirect_uris:
                if uri not in sector_identifier_uris:
                    raise MessageValidationError(
                        "The sector_identifier_uri json must include URIs from the redirect_uri array."
                    )

        if self.response_types is not None and self.grant_types is not None:
            for response_type in self.response_types:
                for word in response_type.split():
                    grant = _GRANT_FOR_RESPONSE_TYPE.get(word)
                    if grant is not None and grant not in self.grant_types:
                        raise MessageValidationError("The response_types do not match grant_types.")

        uris = [
            self.logo_uri,
            self.client_uri,
            self.policy_uri,
            self.tos_uri,
            self.jwks_uri,
            self.sector_identifier_uri,
            self.initiate_login_uri,
            self.registration_client_uri,
            *(self.redirect_uris or []),
            *(self.request_uris or []),
        ]
        for uri in uris:
            if uri is None:
                continue
            if urlparse(uri).scheme != "https":
                raise MessageValidationError("Some of the URIs for the client is not on https")


class StandardClaims(Message):
    """Standard end-user claims shared by ID Tokens and UserInfo responses."""

    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    middle_name: str | None = None
    nickname: str | None = None
    preferred_username: str | None = None
    profile: str | None = None
    picture: str | None = None
    website: str | None = None
    email: str | None = None
    email_verified: bool | None = None
    gender: str | None = None
    birthdate: str | None = None
    zoneinfo: str | None = None
    locale: str | None = None
    phone_number: str | None = None
    phone_number_verified: bool | None = None
    address: Address | None = None
    updated_at: datetime | None = None


class IdToken(StandardClaims):
    """
    ID Token claim set.

    `iss` is always required. `sub`, `aud`, `exp` and `iat` are required unless the token
    comes from a self-issued OP.
    """

    required_fields = ("iss", "sub", "aud", "exp", "iat")

    iss: str | None = None
    sub: str | None = None
    aud: list[str] | None = None
    exp: datetime | None = None
    iat: datetime | None = None
    auth_time: datetime | None = None
    nonce: str | None = None
    acr: str | None = None
    amr: list[str] | None = None
    azp: str | None = None
    at_hash: str | None = None
    c_hash: str | None = None
    sub_jwk: JWK | None = None

    @property
    def is_self_issued(self) -> bool:
        return self.iss == SELF_ISSUED_ISSUER

    def validate_message(self) -> None:
        if self.iss is None:
            raise MessageValidationError("Missing iss required parameter.")
        if not self.is_self_issued:
            super().validate_message()


class UserInfoRequest(AuthenticatedMessage):
    access_token: str | None = None
    scope: list[str] | None = None
    state: str | None = None
    claims: ClaimsRequest | None = None


class UserInfoResponse(StandardClaims):
    """
    UserInfo claims. Every unrecognized claim, including `_claim_names` and
    `_claim_sources`, is kept verbatim in `custom_claims`.
    """

    required_fields = ("sub",)
    catch_all = "custom_claims"

    sub: str | None = None
    custom_claims: dict[str, JsonValue] = Field(default_factory=dict)


class WebFingerLink(Message):
    rel: str | None = None
    href: str | None = None
    type: str | None = None


class WebFingerResponse(Message):
    subject: str | None = None
    expires: str | None = None
    aliases: list[str] | None = None
    links: list[WebFingerLink] | None = None

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
Self-issued OpenID Provider: answers an authorization request locally, without any
network round-trip, with an ID Token issued by the holder of a certificate.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from cryptography import x509

from coreason_oidc_rp import jose
from coreason_oidc_rp.keys import USE_SIGNATURE, jwk_from_certificate, self_issued_subject
from coreason_oidc_rp.messages import (
    SELF_ISSUED_ISSUER,
    Address,
    AuthorizationRequest,
    IdToken,
    ImplicitResponse,
    MessageScope,
)
from coreason_oidc_rp.utils.logger import logger

SELF_ISSUED_SIGNING_ALG = "RS256"


class SelfIssuedProvider:
    """
    Synthesizes implicit responses for the self-issued OP.

    Attributes:
        certificate (x509.Certificate): The certificate identifying the end-user.
        private_key (Any): The certificate's private key. Without it tokens are unsigned (`alg=none`).
        token_lifetime (int): Lifetime of the issued ID Tokens in seconds.
    """

    def __init__(self, certificate: x509.Certificate, private_key: Any = None, token_lifetime: int = 3600) -> None:
        self.certificate = certificate
        self.private_key = private_key
        self.token_lifetime = token_lifetime

    def build_id_token(self, request: AuthorizationRequest) -> IdToken:
        """
        Builds the ID Token claims for `request`, with sample end-user claims for each
        requested profile, email, address and phone scope.
        """
        scope = request.scope or []
        now = datetime.now(UTC).replace(microsecond=0)
        claims: dict[str, Any] = {
            "iss": SELF_ISSUED_ISSUER,
            "sub": self_issued_subject(self.certificate),
            "aud": [request.redirect_uri],
            "nonce": request.nonce,
            "iat": now,
            "exp": now + timedelta(seconds=self.token_lifetime),
            "sub_jwk": jwk_from_certificate(self.certificate, use=USE_SIGNATURE),
        }

        if MessageScope.PROFILE in scope:
            claims.update(given_name="Myself", family_name="User", name="Myself User")

        if MessageScope.EMAIL in scope:
            claims["email"] = "me@self-issued.me"

        if MessageScope.ADDRESS in scope:
            claims["address"] = Address(
                street_address="Via Test, 1",
                locality="Milano",
                postal_code="20100",
                country="Italy",
            )

        if MessageScope.PHONE in scope:
            claims["phone_number"] = "0"

        id_token = IdToken(**claims)
        id_token.validate_message()
        return id_token

    def authenticate(self, request: AuthorizationRequest) -> ImplicitResponse:
        """
        Answers an authorization request as the self-issued OP.

        Args:
            request: The authorization request. It is validated first.

        Returns:
            ImplicitResponse: The response carrying the ID Token and the request's `state`.

        Raises:
            MessageValidationError: If the request is invalid.
        """
        request.validate_message()
        id_token = self.build_id_token(request)

        if self.private_key is not None:
            token = jose.encode_jws(id_token.to_dict(), self.private_key, SELF_ISSUED_SIGNING_ALG)
        else:
            token = jose.encode_jws(id_token.to_dict(), None, jose.NONE_ALGORITHM)

        logger.info("Issued self-issued ID Token")
        response = ImplicitResponse(id_token=token, state=request.state)
        response.validate_message()
        return response

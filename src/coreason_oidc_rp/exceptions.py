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
Custom exceptions for the coreason-oidc-rp package.
"""


class CoreasonOIDCError(Exception):
    """Base exception for all coreason-oidc-rp errors."""


class OIDCError(CoreasonOIDCError):
    """
    Raised when an OpenID Connect protocol rule is violated
    (wrong issuer, wrong audience, wrong nonce, the OP answered with an `error`, etc.).

    Attributes:
        error (str | None): The OAuth2 `error` code returned by the OP, if any.
        error_description (str | None): The OP supplied `error_description`, if any.
    """

    def __init__(self, message: str, error: str | None = None, error_description: str | None = None) -> None:
        super().__init__(message)
        self.error = error
        self.error_description = error_description


class MessageValidationError(OIDCError):
    """Raised when a protocol message fails its own field presence/shape invariants."""


class IntegrityError(CoreasonOIDCError):
    """
    Raised when a signature or MAC does not verify, or an encrypted payload cannot be decrypted.
    Kept apart from OIDCError so callers can tell tampering from semantic errors.
    """


class KeyResolutionError(CoreasonOIDCError):
    """Raised when no usable key can be chosen to verify or decrypt a token."""


class KeyNotFoundError(KeyResolutionError):
    """Raised when no key in the set matches the requested kid or use/kty."""


class AmbiguousKeyError(KeyResolutionError):
    """Raised when a token carries no kid and several keys match use/kty."""


class TransportError(CoreasonOIDCError):
    """Raised on network failure, non-2xx HTTP status or malformed JSON."""


class RequestTimeoutError(TransportError):
    """Raised when an outbound call times out or is cancelled."""


class OversizedResponseError(TransportError):
    """Raised when an HTTP response is too large."""

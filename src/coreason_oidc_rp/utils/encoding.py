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
Base64url and random-string helpers shared by the JOSE and RP layers.
"""

import secrets
import string

from authlib.common.encoding import to_bytes, to_unicode, urlsafe_b64decode, urlsafe_b64encode

RANDOM_ALPHABET = string.ascii_uppercase + string.digits


def b64url_encode(data: bytes | str) -> str:
    """Unpadded base64url text of `data`."""
    return to_unicode(urlsafe_b64encode(to_bytes(data)))


def b64url_decode(data: str) -> bytes:
    """
    Decodes unpadded (or padded) base64url text.

    Raises:
        ValueError: If the text is not valid base64url.
    """
    try:
        return urlsafe_b64decode(to_bytes(data.rstrip("=")))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid base64url data: {e}") from e


def random_string(length: int = 16) -> str:
    """Random identifier drawn from A-Z0-9, used for state, nonce and jti values."""
    return "".join(secrets.choice(RANDOM_ALPHABET) for _ in range(length))

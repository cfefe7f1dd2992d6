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
Configuration for the coreason-oidc-rp package.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelyingPartyConfig(BaseSettings):
    """
    Configuration settings for the Relying Party engine.

    Attributes:
        http_timeout (float): Timeout in seconds applied to every outbound call.
        clock_skew_leeway (int): Seconds tolerated on `exp` and WebFinger `expires`.
        max_id_token_age (int): Maximum age in seconds of an ID Token `iat`.
        client_assertion_lifetime (int): Lifetime of client_secret_jwt / private_key_jwt assertions.
        self_issued_token_lifetime (int): Lifetime of locally synthesized self-issued ID Tokens.
        max_response_bytes (int): Upper bound on the size of any OP response body.
        unsafe_local_dev (bool): Allows plain http and private addresses. Never enable in production.
        pii_salt (SecretStr): Salt for anonymizing subjects in logs and traces.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_RP_",
        case_sensitive=False,
    )

    http_timeout: float = Field(..., description="Timeout in seconds for all OP network operations.")
    clock_skew_leeway: int = 600
    max_id_token_age: int = 86400
    client_assertion_lifetime: int = 600
    self_issued_token_lifetime: int = 3600
    max_response_bytes: int = 1_000_000
    unsafe_local_dev: bool = False
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    @field_validator("http_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """
        Ensures the timeout is a positive number of seconds.
        """
        if v <= 0:
            raise ValueError("http_timeout must be positive")
        return v

    @field_validator("clock_skew_leeway")
    @classmethod
    def validate_leeway(cls, v: int) -> int:
        if v < 0:
            raise ValueError("clock_skew_leeway must not be negative")
        return v

    @field_validator(
        "max_id_token_age",
        "client_assertion_lifetime",
        "self_issued_token_lifetime",
        "max_response_bytes",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

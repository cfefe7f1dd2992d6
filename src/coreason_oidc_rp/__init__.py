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
OpenID Connect 1.0 Relying Party: discovery, dynamic registration, authorization flows,
token and UserInfo calls, and ID Token validation.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import RelyingPartyConfig
from .exceptions import (
    AmbiguousKeyError,
    CoreasonOIDCError,
    IntegrityError,
    KeyNotFoundError,
    KeyResolutionError,
    MessageValidationError,
    OIDCError,
    TransportError,
)
from .provider_cache import MemoryProviderCache, ProviderCacheProtocol, ProviderData
from .relying_party import (
    AuthorizationDispatch,
    RelyingParty,
    RelyingPartyAsync,
    RemoteTarget,
    SelfIssuedTarget,
)
from .sessions import AuthSession, FlowState, SessionStore

__all__ = [
    "AmbiguousKeyError",
    "AuthSession",
    "AuthorizationDispatch",
    "CoreasonOIDCError",
    "FlowState",
    "IntegrityError",
    "KeyNotFoundError",
    "KeyResolutionError",
    "MemoryProviderCache",
    "MessageValidationError",
    "OIDCError",
    "ProviderCacheProtocol",
    "ProviderData",
    "RelyingParty",
    "RelyingPartyAsync",
    "RelyingPartyConfig",
    "RemoteTarget",
    "SelfIssuedTarget",
    "SessionStore",
    "TransportError",
]

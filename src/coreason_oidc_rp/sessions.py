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
Per-flow authentication state, keyed by the `state` parameter.
"""

from enum import IntEnum

import anyio
from pydantic import BaseModel, ConfigDict, Field

from coreason_oidc_rp.exceptions import OIDCError
from coreason_oidc_rp.messages import ClientInformation, ProviderMetadata
from coreason_oidc_rp.utils.encoding import random_string


class FlowState(IntEnum):
    UNSTARTED = 0
    DISCOVERED = 1
    REGISTERED = 2
    AUTHORIZATION_SENT = 3
    AUTHORIZATION_RECEIVED = 4
    TOKEN_EXCHANGED = 5
    USERINFO_RETRIEVED = 6
    VALIDATED = 7


class AuthSession(BaseModel):
    """
    One authentication attempt against one OP.

    Sessions are immutable; `advance` returns an updated copy.

    Attributes:
        state (str): The `state` value sent to the OP, also the session key.
        nonce (str): The `nonce` value sent to the OP.
        redirect_uri (str | None): Where the OP answers.
        scope (list[str]): Requested scopes.
        flow_state (FlowState): How far the flow went.
        provider (ProviderMetadata | None): The OP configuration snapshot used by this flow.
        client (ClientInformation | None): The registered client used by this flow.
    """

    model_config = ConfigDict(frozen=True)

    state: str = Field(default_factory=random_string)
    nonce: str = Field(default_factory=random_string)
    redirect_uri: str | None = None
    scope: list[str] = Field(default_factory=lambda: ["openid"])
    flow_state: FlowState = FlowState.UNSTARTED
    provider: ProviderMetadata | None = None
    client: ClientInformation | None = None

    def advance(self, target: FlowState, **changes: object) -> "AuthSession":
        """
        Moves the flow forward to `target`.

        Raises:
            OIDCError: If `target` is not after the current state.
        """
        if target <= self.flow_state:
            raise OIDCError(f"Cannot move authentication flow from {self.flow_state.name} to {target.name}.")
        return self.model_copy(update={**changes, "flow_state": target})


class SessionStore:
    """
    In-memory store of live sessions. Safe for concurrent flows within one event loop.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, AuthSession] = {}
        self._lock: anyio.Lock | None = None

    def _get_lock(self) -> anyio.Lock:
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    async def save(self, session: AuthSession) -> None:
        async with self._get_lock():
            self._sessions[session.state] = session

    async def get(self, state: str) -> AuthSession:
        """
        Raises:
            OIDCError: If no flow with this `state` is known.
        """
        async with self._get_lock():
            session = self._sessions.get(state)
        if session is None:
            raise OIDCError("Error with authentication answer, wrong state.")
        return session

    async def pop(self, state: str) -> AuthSession | None:
        async with self._get_lock():
            return self._sessions.pop(state, None)

    async def count(self) -> int:
        async with self._get_lock():
            return len(self._sessions)

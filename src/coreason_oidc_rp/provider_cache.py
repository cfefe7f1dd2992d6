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
Optional cache of per-OP data (provider configuration and registered client).
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

import anyio
from pydantic import BaseModel, ConfigDict

from coreason_oidc_rp.messages import ClientInformation, ProviderMetadata
from coreason_oidc_rp.utils.logger import logger


class ProviderData(BaseModel):
    """What an application keeps about one OP relationship."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    provider: ProviderMetadata
    client: ClientInformation | None = None


ProviderDataFactory = Callable[[], Awaitable[ProviderData]]


class ProviderCacheProtocol(Protocol):
    """Protocol for a cache of ProviderData keyed by entity id."""

    async def get_or_create(self, entity_id: str, factory: ProviderDataFactory) -> ProviderData:
        """
        Returns the cached data for `entity_id`, building it with `factory` on first use.
        """
        ...


class MemoryProviderCache:
    """
    In-memory implementation of ProviderCacheProtocol.
    Entries are built once under a lock and never evicted or refreshed. Not suitable for
    distributed systems, and key rotation requires building a new cache.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ProviderData] = {}
        self._lock: anyio.Lock | None = None

    async def get_or_create(self, entity_id: str, factory: ProviderDataFactory) -> ProviderData:
        if self._lock is None:
            self._lock = anyio.Lock()

        async with self._lock:
            entry = self._entries.get(entity_id)
            if entry is None:
                logger.debug(f"Provider cache miss for {entity_id}")
                entry = await factory()
                self._entries[entity_id] = entry
            return entry

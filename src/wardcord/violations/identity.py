"""Translation between Discord user ids and backend user ids."""

from __future__ import annotations

from typing import Dict, Optional

from wardcord.datatypes.discord_datatypes import InternalUserID, UserID
from wardcord.rpc.backend_client import BackendClient, BackendError, BackendUser
from wardcord.util.logger import get_logger

logger = get_logger("identity_bridge")


class IdentityBridge:
    """Two-way cache of ``UserID`` <-> ``InternalUserID`` backed by ``users/get``.

    Lookups return None when the user is unknown or the backend is unreachable;
    callers treat that as "cannot act on this user right now".
    """

    def __init__(self, backend: BackendClient) -> None:
        self.backend = backend
        self._to_internal: Dict[UserID, InternalUserID] = {}
        self._to_discord: Dict[InternalUserID, UserID] = {}

    def remember(self, discord_id: UserID, internal_id: InternalUserID) -> None:
        self._to_internal[discord_id] = internal_id
        self._to_discord[internal_id] = discord_id

    def _remember_user(self, user: Optional[BackendUser]) -> None:
        if user is not None and user.discord_id is not None:
            self.remember(user.discord_id, user.id)

    def cached_discord_id(self, internal_id: InternalUserID) -> Optional[UserID]:
        return self._to_discord.get(internal_id)

    async def to_internal(self, discord_id: UserID) -> Optional[InternalUserID]:
        cached = self._to_internal.get(discord_id)
        if cached is not None:
            return cached
        try:
            user = await self.backend.get_user_by_discord_id(discord_id)
        except BackendError as exc:
            logger.warning("[IDENTITY] Could not resolve Discord user %s: %s", discord_id, exc)
            return None
        self._remember_user(user)
        return user.id if user else None

    async def to_discord(self, internal_id: InternalUserID) -> Optional[UserID]:
        cached = self._to_discord.get(internal_id)
        if cached is not None:
            return cached
        try:
            user = await self.backend.get_user_by_id(internal_id)
        except BackendError as exc:
            logger.warning("[IDENTITY] Could not resolve backend user %s: %s", internal_id, exc)
            return None
        self._remember_user(user)
        if user is None or user.discord_id is None:
            logger.error("[IDENTITY] Backend user %s has no Discord id", internal_id)
            return None
        return user.discord_id

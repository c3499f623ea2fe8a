"""
Restriction enforcement on platform events.

Every handler starts with one dictionary lookup in the restriction cache and
returns immediately for unrestricted users; the backend is only consulted
after a restriction actually fired, to explain it to the user.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import discord

from wardcord.datatypes.discord_datatypes import GuildID, UserID
from wardcord.datatypes.violation_datatypes import FeatureRestriction
from wardcord.util.discord_utils import is_ignored_author, safe_delete_message, safe_send_dm
from wardcord.util.logger import get_logger
from wardcord.violations import notifications
from wardcord.violations.warning_system import WarningSystem

logger = get_logger("restriction_enforcement")

URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)


@dataclass(slots=True)
class RateLimitBucket:
    count: int
    reset_at: float


class MessageRateLimiter:
    """Fixed-window message counter per user.

    The first ``limit`` messages in a window pass; later ones are rejected
    until the window resets. Rejected messages do not extend the window.
    """

    def __init__(self, limit: int = 3, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._buckets: Dict[UserID, RateLimitBucket] = {}

    def hit(self, user_id: UserID) -> bool:
        """Count one message. Returns True if it must be deleted."""
        now = self.clock()
        bucket = self._buckets.get(user_id)
        if bucket is None or now >= bucket.reset_at:
            self._buckets[user_id] = RateLimitBucket(count=1, reset_at=now + self.window_seconds)
            return False
        if bucket.count >= self.limit:
            return True
        bucket.count += 1
        return False

    def retry_after(self, user_id: UserID) -> int:
        bucket = self._buckets.get(user_id)
        if bucket is None:
            return 0
        return max(0, int(bucket.reset_at - self.clock() + 0.999))

    def prune(self) -> int:
        """Drop elapsed buckets; returns how many were removed."""
        now = self.clock()
        stale = [user_id for user_id, bucket in self._buckets.items() if now >= bucket.reset_at]
        for user_id in stale:
            del self._buckets[user_id]
        return len(stale)


class RestrictionEnforcer:
    """Applies cached restrictions to messages, voice states, interactions and nicknames."""

    def __init__(self, warning_system: WarningSystem, rate_limiter: Optional[MessageRateLimiter] = None) -> None:
        self.warning_system = warning_system
        self.rate_limiter = rate_limiter or MessageRateLimiter()

    @property
    def restrictions(self):
        return self.warning_system.restrictions

    # --------------------------
    # Messages
    # --------------------------
    def check_message(self, message: discord.Message) -> Optional[FeatureRestriction]:
        """Return the restriction this message violates, or None.

        Checks run in order embed, attachment, link, rate limit; the last one
        that matches is reported. The rate limiter is only fed for users under
        RATE_LIMIT.
        """
        user_id = UserID.from_user(message.author)
        active = self.restrictions.get(user_id)
        if not active:
            return None

        triggered: Optional[FeatureRestriction] = None
        if FeatureRestriction.MESSAGE_EMBED in active and message.embeds:
            triggered = FeatureRestriction.MESSAGE_EMBED
        if FeatureRestriction.MESSAGE_ATTACH in active and message.attachments:
            triggered = FeatureRestriction.MESSAGE_ATTACH
        if FeatureRestriction.MESSAGE_LINK in active and URL_PATTERN.search(message.content or ""):
            triggered = FeatureRestriction.MESSAGE_LINK
        if self.restrictions.is_rate_limited(user_id) and self.rate_limiter.hit(user_id):
            triggered = FeatureRestriction.RATE_LIMIT
        return triggered

    async def handle_message(self, message: discord.Message) -> bool:
        """Delete a message that breaks an active restriction and DM the author. Returns True if deleted."""
        if message.guild is None or is_ignored_author(message.author):
            return False

        restriction = self.check_message(message)
        if restriction is None:
            return False

        user_id = UserID.from_user(message.author)
        deleted = await safe_delete_message(message)
        logger.info("[ENFORCEMENT] %s message from %s blocked by %s", "Deleted" if deleted else "Could not delete", user_id, restriction)

        try:
            violation, repeats = await self.warning_system.describe_restriction(
                user_id, GuildID.from_guild(message.guild), restriction
            )
        except Exception as exc:
            logger.warning("[ENFORCEMENT] Could not load violation details for %s: %s", user_id, exc)
            violation, repeats = None, 0

        is_rate_limit = restriction is FeatureRestriction.RATE_LIMIT
        embed = notifications.restriction_notice_embed(
            restriction,
            deleted_content=message.content or None,
            violation=violation,
            repeat_count=repeats,
            rate_limit=self.rate_limiter.limit if is_rate_limit else None,
            retry_after_seconds=self.rate_limiter.retry_after(user_id) if is_rate_limit else None,
        )
        if not await safe_send_dm(message.author, embed=embed, view=notifications.standing_check_view()):
            logger.warning("[ENFORCEMENT] Could not send restriction DM to %s", user_id)
        return deleted

    # --------------------------
    # Voice
    # --------------------------
    async def handle_voice_state(self, member: discord.Member, after: discord.VoiceState) -> None:
        if member.bot or after.channel is None:
            return
        active = self.restrictions.get(UserID.from_user(member))
        if not active:
            return

        if FeatureRestriction.VOICE_SPEAK in active and not after.mute:
            try:
                await member.edit(mute=True, reason="Voice speak restriction active")
                logger.info("[ENFORCEMENT] Server-muted %s", member.id)
            except discord.HTTPException as exc:
                logger.error("[ENFORCEMENT] Failed to server-mute %s: %s", member.id, exc)

        if FeatureRestriction.VOICE_VIDEO in active and after.self_video:
            reason = "video"
        elif FeatureRestriction.VOICE_STREAM in active and after.self_stream:
            reason = "streaming"
        else:
            return
        try:
            await member.move_to(None, reason=f"Voice {reason} restriction active")
            logger.info("[ENFORCEMENT] Disconnected %s for %s", member.id, reason)
        except discord.HTTPException as exc:
            logger.error("[ENFORCEMENT] Failed to disconnect %s for %s: %s", member.id, reason, exc)

    # --------------------------
    # Interactions
    # --------------------------
    async def handle_interaction(self, interaction: discord.Interaction) -> bool:
        """Block component interactions for users under REACTION_ADD. Returns True if blocked."""
        if interaction.type is not discord.InteractionType.component or interaction.user is None:
            return False
        if not self.restrictions.has(UserID.from_user(interaction.user), FeatureRestriction.REACTION_ADD):
            return False

        custom_id = (interaction.data or {}).get("custom_id")
        if notifications.is_warning_system_button(custom_id):
            return False

        try:
            await interaction.response.send_message(
                "❌ You cannot use reactions or buttons right now because of an active restriction.",
                ephemeral=True,
            )
        except discord.HTTPException as exc:
            logger.warning("[ENFORCEMENT] Failed to notify %s about reaction restriction: %s", interaction.user.id, exc)
        return True

    # --------------------------
    # Nicknames
    # --------------------------
    async def handle_member_update(self, before: discord.Member, after: discord.Member) -> bool:
        """Revert a nickname change under NICKNAME_CHANGE. Returns True if reverted."""
        if before.nick == after.nick or after.bot:
            return False
        if not self.restrictions.has(UserID.from_user(after), FeatureRestriction.NICKNAME_CHANGE):
            return False

        try:
            await after.edit(nick=before.nick, reason="Nickname change restriction active")
        except discord.HTTPException as exc:
            logger.error("[ENFORCEMENT] Failed to revert nickname of %s: %s", after.id, exc)
            return False
        logger.info("[ENFORCEMENT] Reverted nickname change of %s", after.id)
        return True

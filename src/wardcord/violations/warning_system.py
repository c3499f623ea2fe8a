"""
Warning system service.

:class:`WarningSystem` owns every piece of mutable warning state (restriction
cache, violation cache, identity mapping, suspension dedup set) and exposes the
operations the cogs and the expiration sweeper call:

- :meth:`WarningSystem.issue_violation` runs the issuance pipeline. Only the
  backend write can fail the call; everything after it is best effort.
- :meth:`WarningSystem.expire_violation` expires one violation idempotently.
- :meth:`WarningSystem.update_account_standing` recomputes standing and fires
  :meth:`WarningSystem.handle_suspension` once per crossing into SUSPENDED.
- :meth:`WarningSystem.load_snapshot`, :meth:`WarningSystem.rehydrate` and
  :meth:`WarningSystem.save_snapshot` manage startup and crash recovery.

Flows touching one user run under that user's ``asyncio.Lock``;
``update_account_standing`` and ``handle_suspension`` are called with the lock
already held and never take it themselves.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Set, Tuple

import discord

from wardcord.configuration.app_configuration import AppConfig, app_config
from wardcord.datatypes.discord_datatypes import GuildID, InternalUserID, UserID
from wardcord.datatypes.violation_datatypes import (
    RATE_LIMIT_RESTRICTIONS,
    AccountStanding,
    AccountStandingData,
    FeatureRestriction,
    Violation,
    ViolationAction,
    ViolationActionType,
    ViolationDraft,
    ViolationType,
    utcnow,
)
from wardcord.rpc.backend_client import BackendClient, BackendError
from wardcord.util.discord_utils import (
    bot_can_ban,
    resolve_member,
    resolve_text_channel,
    safe_send_dm,
)
from wardcord.util.logger import get_logger
from wardcord.violations import notifications
from wardcord.violations.identity import IdentityBridge
from wardcord.violations.policy_table import RATE_LIMITED_TYPES, ExpirationRule, PolicyTable
from wardcord.violations.restriction_cache import RestrictionCache
from wardcord.violations.snapshot_store import RestrictionSnapshot, SnapshotStore
from wardcord.violations.standing import calculate_standing

logger = get_logger("warning_system")

SUSPENSION_REASON = "Automatic suspension - account standing reached SUSPENDED"
BAN_DELETE_MESSAGE_SECONDS = 86400


class WarningSystem:
    """Violation lifecycle and restriction state for every guild the bot serves."""

    def __init__(
        self,
        bot: discord.Bot,
        backend: BackendClient,
        *,
        config: AppConfig = app_config,
        policy_table: Optional[PolicyTable] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        identity: Optional[IdentityBridge] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.bot = bot
        self.backend = backend
        self.clock = clock
        self.policy_table = policy_table or PolicyTable(default_expiration_days=config.default_expiration_days)
        self.snapshot_store = snapshot_store or SnapshotStore(config.snapshot_path)
        self.identity = identity or IdentityBridge(backend)
        self.restrictions = RestrictionCache()

        self.severity_weights = config.severity_weights
        self.standing_thresholds = config.standing_thresholds
        self.repeat_window = datetime.timedelta(days=config.repeat_offense_window_days)
        self.max_timeout = datetime.timedelta(days=config.max_timeout_days)
        self.audit_channel_id = config.audit_channel_id
        self.appeal_url = config.appeal_url
        self.rules_base_url = config.rules_base_url
        self.standing_roles = config.standing_roles

        self._violations: Dict[InternalUserID, List[Violation]] = {}
        self._loaded: Set[Tuple[InternalUserID, GuildID]] = set()
        self._locks: Dict[InternalUserID, asyncio.Lock] = {}
        self._suspended: Set[Tuple[GuildID, InternalUserID]] = set()

    # --------------------------
    # Internal helpers
    # --------------------------
    def lock_for(self, user_id: InternalUserID) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _best_effort(self, label: str, operation: Awaitable) -> None:
        try:
            await operation
        except Exception as exc:
            logger.error("[WARNING SYSTEM] %s failed: %s", label, exc, exc_info=True)

    def _cache_violation(self, violation: Violation) -> None:
        cached = self._violations.setdefault(violation.user_id, [])
        for index, existing in enumerate(cached):
            if existing.id == violation.id:
                cached[index] = violation
                return
        cached.append(violation)

    def _find_cached(self, user_id: InternalUserID, violation_id: int) -> Optional[Violation]:
        for violation in self._violations.get(user_id, []):
            if violation.id == violation_id:
                return violation
        return None

    def iter_cached_violations(self) -> Iterator[Violation]:
        """Iterate over a copy of every cached violation."""
        for violations in list(self._violations.values()):
            yield from list(violations)

    def _active_restrictions(self, user_id: InternalUserID, now: datetime.datetime) -> Set[FeatureRestriction]:
        required: Set[FeatureRestriction] = set()
        for violation in self._violations.get(user_id, []):
            if not violation.is_expired(now):
                required.update(violation.restrictions)
        return required

    # --------------------------
    # Violation queries
    # --------------------------
    async def _load_violations(self, user_id: InternalUserID, guild_id: GuildID) -> List[Violation]:
        """Return the user's violations in ``guild_id``, fetching them on a cache miss.

        Raises:
            BackendError: If the cache is cold and the backend is unreachable.
        """
        key = (user_id, guild_id)
        if key not in self._loaded:
            fetched = await self.backend.list_violations(user_id, guild_id, include_expired=True)
            self._store_guild_history(user_id, guild_id, fetched)
        return [v for v in self._violations.get(user_id, []) if v.guild_id == guild_id]

    def _store_guild_history(self, user_id: InternalUserID, guild_id: GuildID, violations: List[Violation]) -> None:
        self._violations[user_id] = [v for v in self._violations.get(user_id, []) if v.guild_id != guild_id]
        for violation in violations:
            self._cache_violation(violation)
        self._loaded.add((user_id, guild_id))

    async def get_user_violations(self, user_id: InternalUserID, guild_id: GuildID) -> List[Violation]:
        """Violation history (including expired) for one user and guild. Empty if the backend is down."""
        try:
            return await self._load_violations(user_id, guild_id)
        except BackendError as exc:
            logger.warning("[WARNING SYSTEM] Could not load violations for user %s: %s", user_id, exc)
            return []

    async def is_repeat_offense(
        self,
        user_id: InternalUserID,
        guild_id: GuildID,
        violation_type: ViolationType,
        now: Optional[datetime.datetime] = None,
    ) -> bool:
        """True if an active violation of the same type was issued within the repeat window."""
        now = now or self.clock()
        window_start = now - self.repeat_window
        return any(
            v.type == violation_type and not v.is_expired(now) and v.issued_at >= window_start
            for v in await self.get_user_violations(user_id, guild_id)
        )

    async def describe_restriction(
        self,
        discord_id: UserID,
        guild_id: GuildID,
        restriction: FeatureRestriction,
    ) -> Tuple[Optional[Violation], int]:
        """Find the active violation behind ``restriction`` and count earlier ones of its type."""
        internal_id = await self.identity.to_internal(discord_id)
        if internal_id is None:
            return None, 0

        now = self.clock()
        wanted = RATE_LIMIT_RESTRICTIONS if restriction in RATE_LIMIT_RESTRICTIONS else {restriction}
        active = [v for v in await self.get_user_violations(internal_id, guild_id) if not v.is_expired(now)]
        relevant = [v for v in active if not v.restrictions.isdisjoint(wanted)]
        if not relevant:
            return None, 0
        # Prefer the one that lasts longest; permanent beats any expiry
        violation = max(relevant, key=lambda v: (v.is_permanent, v.expires_at or now))
        repeats = sum(1 for v in active if v.type == violation.type and v.id != violation.id)
        return violation, repeats

    # --------------------------
    # Issuance
    # --------------------------
    def _prepare_draft(self, draft: ViolationDraft, rule: ExpirationRule, is_repeat: bool, now: datetime.datetime) -> ViolationDraft:
        expires_at = draft.expires_at
        if expires_at is None:
            days = rule.days_for(is_repeat)
            expires_at = now + datetime.timedelta(days=days) if days > 0 else None

        if draft.restrictions is None:
            restrictions = self.policy_table.restrictions_for_type(draft.type)
        else:
            restrictions = set(draft.restrictions)

        if rule.use_discord_timeout:
            restrictions -= RATE_LIMIT_RESTRICTIONS
        elif draft.type in RATE_LIMITED_TYPES:
            restrictions.add(FeatureRestriction.RATE_LIMIT)

        return dataclasses.replace(
            draft,
            expires_at=expires_at,
            restrictions=restrictions,
            policy_violated=draft.policy_violated or self.policy_table.primary_policy(draft.type),
        )

    async def issue_violation(self, draft: ViolationDraft) -> Optional[Violation]:
        """Persist a violation and enforce it.

        Returns the stored violation, or None if the backend write failed (in
        which case nothing else happened).
        """
        async with self.lock_for(draft.user_id):
            now = self.clock()
            is_repeat = await self.is_repeat_offense(draft.user_id, draft.guild_id, draft.type, now)
            rule = self.policy_table.expiration_rule(draft.type, draft.severity)
            prepared = self._prepare_draft(draft, rule, is_repeat, now)

            try:
                violation = await self.backend.issue_violation(prepared)
            except BackendError as exc:
                logger.error("[WARNING SYSTEM] Failed to issue %s violation for user %s: %s", draft.type, draft.user_id, exc)
                return None

            self._cache_violation(violation)
            logger.info(
                "[WARNING SYSTEM] Issued violation #%s (%s/%s, repeat=%s) to user %s",
                violation.id, violation.type, violation.severity, is_repeat, violation.user_id,
            )

            discord_id = await self.identity.to_discord(violation.user_id)
            guild = self.bot.get_guild(violation.guild_id.to_int())
            member = await resolve_member(guild, discord_id) if guild and discord_id else None

            if discord_id is not None:
                self.restrictions.merge(discord_id, violation.restrictions)
            else:
                logger.error("[WARNING SYSTEM] No Discord id for user %s; restrictions not cached", violation.user_id)

            if rule.use_discord_timeout:
                await self._best_effort("Native enforcement", self._apply_native_action(member, violation, rule, is_repeat, now))
            await self._best_effort("Violation DM", self._send_violation_dm(member, guild, violation))
            await self._best_effort("Audit log", self._log_to_audit(guild, member, violation))
            await self._best_effort("Standing update", self._refresh_standing(member, violation.user_id, violation.guild_id))
            await self._best_effort("Snapshot save", self.save_snapshot())
            return violation

    async def _apply_native_action(
        self,
        member: Optional[discord.Member],
        violation: Violation,
        rule: ExpirationRule,
        is_repeat: bool,
        now: datetime.datetime,
    ) -> None:
        if member is None:
            logger.warning("[WARNING SYSTEM] Member for violation #%s not in guild; skipping native action", violation.id)
            return

        days = rule.days_for(is_repeat)
        reason = f"{violation.type} violation ({violation.severity}): {violation.reason}"[:512]
        if days == 0:
            action = ViolationAction(type=ViolationActionType.BAN, applied=False, target=str(member.id))
            try:
                await member.ban(reason=reason, delete_message_seconds=BAN_DELETE_MESSAGE_SECONDS)
                action.applied, action.applied_at = True, self.clock()
                logger.info("[WARNING SYSTEM] Banned %s for violation #%s", member.id, violation.id)
            except discord.HTTPException as exc:
                logger.error("[WARNING SYSTEM] Failed to ban %s for violation #%s: %s", member.id, violation.id, exc)
        else:
            duration = min(datetime.timedelta(days=days), self.max_timeout)
            action = ViolationAction(type=ViolationActionType.TIMEOUT, applied=False, target=str(member.id))
            try:
                await member.timeout(now + duration, reason=reason)
                action.applied, action.applied_at = True, self.clock()
                logger.info("[WARNING SYSTEM] Timed out %s for %s (violation #%s)", member.id, duration, violation.id)
            except discord.HTTPException as exc:
                logger.error("[WARNING SYSTEM] Failed to time out %s for violation #%s: %s", member.id, violation.id, exc)
        violation.actions_applied.append(action)

    async def _send_violation_dm(self, member: Optional[discord.Member], guild: Optional[discord.Guild], violation: Violation) -> None:
        if member is None:
            return
        embed = notifications.violation_dm_embed(
            violation,
            guild.name if guild else "the server",
            self.rules_base_url,
            self.policy_table,
        )
        if not await safe_send_dm(member, embed=embed, view=notifications.review_button_view(violation.id)):
            logger.warning("[WARNING SYSTEM] Could not send violation DM to %s", member.id)

    async def _log_to_audit(self, guild: Optional[discord.Guild], member: Optional[discord.Member], violation: Violation) -> None:
        if guild is None:
            return
        channel = resolve_text_channel(guild, self.audit_channel_id)
        if channel is None:
            return
        issuer_mention = None
        if violation.issued_by is not None and not violation.is_system_issued():
            issuer_id = self.identity.cached_discord_id(violation.issued_by)
            issuer_mention = f"<@{issuer_id}>" if issuer_id else f"internal user {violation.issued_by}"
        user_mention = member.mention if member else f"internal user {violation.user_id}"
        await channel.send(embed=notifications.audit_embed(violation, user_mention, issuer_mention, violation.actions_applied))

    async def _refresh_standing(self, member: Optional[discord.Member], user_id: InternalUserID, guild_id: GuildID) -> None:
        standing = await self.update_account_standing(user_id, guild_id)
        if standing is not None and member is not None:
            await self.apply_standing_roles(member, standing.standing)

    # --------------------------
    # Standing and suspension
    # --------------------------
    async def calculate_user_standing(self, user_id: InternalUserID, guild_id: GuildID) -> Optional[AccountStandingData]:
        """Standing from the user's history, or None if it cannot be loaded."""
        try:
            violations = await self._load_violations(user_id, guild_id)
        except BackendError as exc:
            logger.warning("[WARNING SYSTEM] Could not compute standing for user %s: %s", user_id, exc)
            return None
        return calculate_standing(
            violations,
            weights=self.severity_weights,
            thresholds=self.standing_thresholds,
            now=self.clock(),
        )

    async def update_account_standing(self, user_id: InternalUserID, guild_id: GuildID) -> Optional[AccountStandingData]:
        """Recompute standing and suspend the user on a fresh crossing into SUSPENDED."""
        standing = await self.calculate_user_standing(user_id, guild_id)
        if standing is None:
            return None

        key = (guild_id, user_id)
        if standing.standing is AccountStanding.SUSPENDED:
            if key not in self._suspended:
                self._suspended.add(key)
                await self.handle_suspension(user_id, guild_id)
        else:
            self._suspended.discard(key)
        return standing

    async def handle_suspension(self, user_id: InternalUserID, guild_id: GuildID) -> bool:
        """Ban a user whose standing reached SUSPENDED. Returns True if the ban went through."""
        guild = self.bot.get_guild(guild_id.to_int())
        discord_id = await self.identity.to_discord(user_id)
        if guild is None or discord_id is None:
            logger.error("[WARNING SYSTEM] Cannot suspend user %s in guild %s: unresolved", user_id, guild_id)
            return False

        member = await resolve_member(guild, discord_id)
        if member is None:
            logger.warning("[WARNING SYSTEM] Cannot suspend %s: not a member of %s", discord_id, guild_id)
            return False
        if not bot_can_ban(guild, member):
            logger.error("[WARNING SYSTEM] Missing permission or hierarchy to ban %s in %s", discord_id, guild_id)
            return False

        await safe_send_dm(member, embed=notifications.suspension_embed(guild.name, self.appeal_url))

        try:
            await member.ban(reason=SUSPENSION_REASON, delete_message_seconds=BAN_DELETE_MESSAGE_SECONDS)
        except discord.HTTPException as exc:
            logger.error("[WARNING SYSTEM] Failed to ban suspended user %s: %s", discord_id, exc)
            return False

        try:
            await self.backend.create_suspension(user_id, guild_id, SUSPENSION_REASON, InternalUserID.system())
        except BackendError as exc:
            logger.error("[WARNING SYSTEM] Banned %s but failed to record suspension: %s", discord_id, exc)

        logger.info("[WARNING SYSTEM] Suspended user %s in guild %s", discord_id, guild_id)
        return True

    async def apply_standing_roles(self, member: discord.Member, standing: AccountStanding) -> None:
        """Give ``member`` the role configured for ``standing`` and drop the other standing roles."""
        if not self.standing_roles:
            return
        for tier, role_id in self.standing_roles.items():
            role = member.guild.get_role(role_id)
            if role is None:
                continue
            has_role = role in member.roles
            try:
                if tier is standing and not has_role:
                    await member.add_roles(role, reason=f"Account standing {standing}")
                elif tier is not standing and has_role:
                    await member.remove_roles(role, reason=f"Account standing {standing}")
            except discord.HTTPException as exc:
                logger.warning("[WARNING SYSTEM] Failed to update standing role %s on %s: %s", role_id, member.id, exc)

    # --------------------------
    # Expiration
    # --------------------------
    async def expire_violation(
        self,
        user_id: InternalUserID,
        guild_id: GuildID,
        violation_id: int,
        *,
        expired_by: Optional[InternalUserID] = None,
        force: bool = False,
        save: bool = True,
    ) -> bool:
        """Expire one violation. Returns False if it was unknown, not due or already expired.

        ``force`` lets an administrator expire a violation before ``expires_at``.
        An elapsed violation stops restricting even when the backend call fails;
        it stays unexpired locally so the next sweep retries it.
        """
        async with self.lock_for(user_id):
            await self.get_user_violations(user_id, guild_id)
            violation = self._find_cached(user_id, violation_id)
            now = self.clock()
            if violation is None or violation.expired_at is not None:
                return False
            elapsed = violation.is_due_for_expiry(now)
            if not force and not elapsed:
                return False

            discord_id = await self.identity.to_discord(user_id)
            try:
                await self.backend.expire_violation(violation.id, expired_by)
            except BackendError as exc:
                logger.error("[WARNING SYSTEM] Failed to expire violation #%s: %s", violation.id, exc)
                if elapsed and discord_id is not None:
                    self.restrictions.release(discord_id, violation.restrictions, self._active_restrictions(user_id, now))
                return False

            violation.mark_expired(now)
            logger.info("[WARNING SYSTEM] Expired violation #%s of user %s", violation.id, user_id)

            if discord_id is not None:
                still_required = self._active_restrictions(user_id, now)
                self.restrictions.release(discord_id, violation.restrictions, still_required)

            guild = self.bot.get_guild(guild_id.to_int())
            member = await resolve_member(guild, discord_id) if guild and discord_id else None
            await self._best_effort("Standing update", self._refresh_standing(member, user_id, guild_id))

        if save:
            await self._best_effort("Snapshot save", self.save_snapshot())
        return True

    # --------------------------
    # Persistence and startup
    # --------------------------
    async def save_snapshot(self) -> bool:
        snapshot = RestrictionSnapshot(
            restrictions={user_id: self.restrictions.get(user_id) for user_id in self.restrictions.users()},
            saved_at=self.clock(),
        )
        return await self.snapshot_store.save(snapshot)

    async def load_snapshot(self) -> bool:
        """Seed the restriction cache from disk so enforcement works before rehydration."""
        snapshot = await self.snapshot_store.load()
        if snapshot is None:
            return False
        self.restrictions.load(snapshot.restrictions)
        logger.info("[WARNING SYSTEM] Loaded %d restricted users from snapshot", len(self.restrictions))
        return True

    async def rehydrate(self) -> int:
        """Rebuild the caches from the backend for every member of every guild.

        Each user is rebuilt under their lock, so issuance or expiry running
        concurrently is never overwritten. Users whose history loaded get
        exactly the union of their active restrictions across the guilds loaded
        so far; users the backend could not answer for keep their snapshot
        entry. Returns the number of users left restricted.
        """
        for guild in list(self.bot.guilds):
            guild_id = GuildID.from_guild(guild)
            logger.info("[WARNING SYSTEM] Rehydrating violations for guild %s (%s)", guild.name, guild.id)
            for member in list(guild.members):
                if member.bot:
                    continue
                discord_id = UserID.from_user(member)
                internal_id = await self.identity.to_internal(discord_id)
                if internal_id is None:
                    continue
                async with self.lock_for(internal_id):
                    try:
                        violations = await self.backend.list_violations(internal_id, guild_id, include_expired=True)
                    except BackendError as exc:
                        logger.warning("[WARNING SYSTEM] Skipping rehydration of %s: %s", discord_id, exc)
                        continue

                    now = self.clock()
                    self._store_guild_history(internal_id, guild_id, violations)
                    self.restrictions.replace(discord_id, self._active_restrictions(internal_id, now))

                    standing = calculate_standing(
                        violations, weights=self.severity_weights, thresholds=self.standing_thresholds, now=now
                    )
                    if standing.standing is AccountStanding.SUSPENDED:
                        self._suspended.add((guild_id, internal_id))

        await self._best_effort("Snapshot save", self.save_snapshot())
        logger.info("[WARNING SYSTEM] Rehydration complete, %d users restricted", len(self.restrictions))
        return len(self.restrictions)

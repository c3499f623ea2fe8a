"""
Violation cog: slash commands for issuing, expiring and inspecting violations.

Commands
- ``/violation issue``: record a violation against a member. Expiration and
  restrictions default to the policy table; moderators may override both.
- ``/violation expire``: force-expire a violation (administrators only).
- ``/standing``: show a member's account standing.
- ``/violations``: list a member's active violations.

Every command defers ephemerally, checks permissions, translates the member
to a backend user through the identity bridge and turns a None result from
the warning system into a user-facing error message.
"""

import datetime
from typing import Optional

import discord
from discord import Option
from discord.ext import commands

from wardcord.datatypes.discord_datatypes import GuildID, InternalUserID, UserID
from wardcord.datatypes.violation_datatypes import (
    FeatureRestriction,
    ViolationDraft,
    ViolationSeverity,
    ViolationType,
    utcnow,
)
from wardcord.util.discord_utils import has_elevated_permissions
from wardcord.util.logger import get_logger
from wardcord.violations import notifications
from wardcord.violations.warning_system import WarningSystem

logger = get_logger("violation_cog")

VIOLATION_TYPE_CHOICES = [t.value for t in ViolationType]
SEVERITY_CHOICES = [s.value for s in ViolationSeverity]


def parse_restriction_list(raw: Optional[str]) -> Optional[set[FeatureRestriction]]:
    """Parse a comma separated list of restriction names.

    Returns None for empty input (use the type's defaults).

    Raises:
        ValueError: If a name is not a known restriction.
    """
    if raw is None or not raw.strip():
        return None
    restrictions = set()
    for name in raw.split(","):
        name = name.strip().upper()
        if not name:
            continue
        try:
            restrictions.add(FeatureRestriction(name))
        except ValueError:
            raise ValueError(f"Unknown restriction `{name}`") from None
    return restrictions


class ViolationCog(commands.Cog):
    """Cog containing the warning system slash commands."""

    violation = discord.SlashCommandGroup(
        "violation", "Issue and manage violations", contexts={discord.InteractionContextType.guild}
    )

    def __init__(self, discord_bot_instance, warning_system: WarningSystem):
        self.discord_bot_instance = discord_bot_instance
        self.warning_system = warning_system
        logger.info("Violation cog loaded")

    async def _resolve_internal(self, ctx: discord.ApplicationContext, member: discord.abc.User) -> Optional[InternalUserID]:
        internal_id = await self.warning_system.identity.to_internal(UserID.from_user(member))
        if internal_id is None:
            await ctx.send_followup(f"Could not find {member.mention} in the moderation backend.")
        return internal_id

    async def _require_guild(self, ctx: discord.ApplicationContext) -> bool:
        if ctx.guild is None:
            await ctx.send_followup("This command can only be used in a server.")
            return False
        return True

    @violation.command(name="issue", description="Issue a violation to a member.")
    async def issue(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member who broke the rules.", required=True),  # type: ignore
        violation_type: Option(str, "Violation type.", name="type", choices=VIOLATION_TYPE_CHOICES, required=True),  # type: ignore
        severity: Option(str, "Severity.", choices=SEVERITY_CHOICES, required=True),  # type: ignore
        reason: Option(str, "Reason shown to the member.", required=True),  # type: ignore
        restrictions: Option(str, "Comma separated restrictions, overrides the type defaults.", required=False, default=None),  # type: ignore
        expires_in_days: Option(int, "Override the expiration (days).", required=False, default=None, min_value=1),  # type: ignore
        content_snapshot: Option(str, "Offending content.", required=False, default=None),  # type: ignore
        context: Option(str, "Extra context for moderators.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._require_guild(ctx):
            return

        if not has_elevated_permissions(ctx.author):
            await ctx.send_followup("You do not have permission to use this command.")
            return
        if not isinstance(user, discord.Member) or user.bot:
            await ctx.send_followup("The specified user is not a member of this server.")
            return
        if user.id == ctx.author.id:
            await ctx.send_followup("You cannot issue a violation to yourself.")
            return

        try:
            requested_restrictions = parse_restriction_list(restrictions)
        except ValueError as exc:
            await ctx.send_followup(str(exc))
            return

        target_id = await self._resolve_internal(ctx, user)
        if target_id is None:
            return
        moderator_id = await self.warning_system.identity.to_internal(UserID.from_user(ctx.author))

        draft = ViolationDraft(
            user_id=target_id,
            guild_id=GuildID.from_guild(ctx.guild),
            type=ViolationType(violation_type),
            severity=ViolationSeverity(severity),
            reason=reason,
            issued_by=moderator_id,
            restrictions=requested_restrictions,
            content_snapshot=content_snapshot,
            context=context,
            expires_at=utcnow() + datetime.timedelta(days=expires_in_days) if expires_in_days else None,
        )

        violation = await self.warning_system.issue_violation(draft)
        if violation is None:
            await ctx.send_followup("❌ Failed to issue the violation. The moderation backend is unavailable, try again later.")
            return

        await ctx.send_followup(
            f"✅ Violation #{violation.id} issued to {user.mention}.",
            embed=notifications.audit_embed(violation, user.mention, ctx.author.mention, violation.actions_applied),
        )

    @violation.command(name="expire", description="Expire a violation early.")
    async def expire(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The member the violation belongs to.", required=True),  # type: ignore
        violation_id: Option(int, "Violation id (see /violations).", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._require_guild(ctx):
            return

        if not isinstance(ctx.author, discord.Member) or not ctx.author.guild_permissions.administrator:
            await ctx.send_followup("Only administrators can expire violations.")
            return

        target_id = await self._resolve_internal(ctx, user)
        if target_id is None:
            return
        moderator_id = await self.warning_system.identity.to_internal(UserID.from_user(ctx.author))

        expired = await self.warning_system.expire_violation(
            target_id,
            GuildID.from_guild(ctx.guild),
            violation_id,
            expired_by=moderator_id,
            force=True,
        )
        if expired:
            await ctx.send_followup(f"✅ Violation #{violation_id} of {user.mention} expired.")
        else:
            await ctx.send_followup(f"Violation #{violation_id} was not found, is already expired, or could not be expired.")

    @commands.slash_command(
        name="standing", description="Show account standing.", contexts={discord.InteractionContextType.guild}
    )
    async def standing(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "Member to inspect (moderators only).", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._require_guild(ctx):
            return

        target = user or ctx.author
        if target.id != ctx.author.id and not has_elevated_permissions(ctx.author):
            await ctx.send_followup("You can only view your own standing.")
            return

        target_id = await self._resolve_internal(ctx, target)
        if target_id is None:
            return

        data = await self.warning_system.calculate_user_standing(target_id, GuildID.from_guild(ctx.guild))
        if data is None:
            await ctx.send_followup("❌ Could not load the account standing. Try again later.")
            return

        view = notifications.standing_overview_view() if target.id == ctx.author.id else None
        kwargs = {"embed": notifications.standing_embed(target.display_name, data)}
        if view is not None:
            kwargs["view"] = view
        await ctx.send_followup(**kwargs)

    @commands.slash_command(
        name="violations", description="List active violations.", contexts={discord.InteractionContextType.guild}
    )
    async def violations(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "Member to inspect (moderators only).", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._require_guild(ctx):
            return

        target = user or ctx.author
        elevated = has_elevated_permissions(ctx.author)
        if target.id != ctx.author.id and not elevated:
            await ctx.send_followup("You can only view your own violations.")
            return

        target_id = await self._resolve_internal(ctx, target)
        if target_id is None:
            return

        history = await self.warning_system.get_user_violations(target_id, GuildID.from_guild(ctx.guild))
        now = utcnow()
        active = [v for v in history if not v.is_expired(now)]
        await ctx.send_followup(
            embed=notifications.violation_list_embed(active, title=f"📋 Active violations: {target.display_name}")
        )


def setup(discord_bot_instance, warning_system: WarningSystem):
    """Register the ViolationCog with the bot."""
    discord_bot_instance.add_cog(ViolationCog(discord_bot_instance, warning_system))

"""Standing buttons Cog for Wardcord.

Handles the fixed-id buttons attached to warning system messages:

- ``standing_check`` (restriction DMs): show the user's standing. Works in DMs
  by looking the user up in the guilds the bot shares with them.
- ``view_violations`` (``/standing``): list the user's active violations.
- ``request_review`` (``/standing``): explain how to request a review.
- ``review_violation_<id>`` (violation DMs): forward a review request for
  that violation to the moderation log channel.
"""

from typing import Optional

import discord
from discord.ext import commands

from wardcord.datatypes.discord_datatypes import GuildID, UserID
from wardcord.datatypes.violation_datatypes import utcnow
from wardcord.util.discord_utils import resolve_text_channel
from wardcord.util.logger import get_logger
from wardcord.violations import notifications
from wardcord.violations.warning_system import WarningSystem

logger = get_logger("standing_buttons_cog")


class StandingButtonsCog(commands.Cog):
    """Cog answering warning system button presses."""

    def __init__(self, discord_bot_instance, warning_system: WarningSystem):
        self.bot = discord_bot_instance
        self.warning_system = warning_system
        logger.info("Standing buttons cog loaded")

    def _home_guild(self, interaction: discord.Interaction) -> Optional[discord.Guild]:
        """The interaction's guild, or in DMs the first shared guild where the user is a member."""
        if interaction.guild is not None:
            return interaction.guild
        for guild in self.bot.guilds:
            if guild.get_member(interaction.user.id) is not None:
                return guild
        return None

    @commands.Cog.listener(name='on_interaction')
    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        if not notifications.is_warning_system_button(custom_id):
            return

        try:
            if custom_id == notifications.STANDING_CHECK_ID:
                await self.show_standing(interaction)
            elif custom_id == notifications.VIEW_VIOLATIONS_ID:
                await self.show_violations(interaction)
            elif custom_id == notifications.REQUEST_REVIEW_ID:
                await interaction.response.send_message(
                    "📝 To request a review, press **Request review** on the DM you received for that violation, "
                    "or contact a moderator with the violation id from `/violations`.",
                    ephemeral=True,
                )
            else:
                await self.request_review(interaction, notifications.review_violation_id(custom_id))
        except discord.HTTPException as exc:
            logger.error(f"Failed to answer button {custom_id} for {interaction.user.id}: {exc}")

    async def show_standing(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        guild = self._home_guild(interaction)
        internal_id = await self.warning_system.identity.to_internal(UserID.from_user(interaction.user))
        if guild is None or internal_id is None:
            await interaction.followup.send("❌ Could not find your account.", ephemeral=True)
            return

        data = await self.warning_system.calculate_user_standing(internal_id, GuildID.from_guild(guild))
        if data is None:
            await interaction.followup.send("❌ Could not load your standing. Try again later.", ephemeral=True)
            return
        await interaction.followup.send(
            embed=notifications.standing_embed(interaction.user.display_name, data),
            ephemeral=True,
        )

    async def show_violations(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        guild = self._home_guild(interaction)
        internal_id = await self.warning_system.identity.to_internal(UserID.from_user(interaction.user))
        if guild is None or internal_id is None:
            await interaction.followup.send("❌ Could not find your account.", ephemeral=True)
            return

        history = await self.warning_system.get_user_violations(internal_id, GuildID.from_guild(guild))
        now = utcnow()
        active = [v for v in history if not v.is_expired(now)]
        await interaction.followup.send(embed=notifications.violation_list_embed(active), ephemeral=True)

    async def request_review(self, interaction: discord.Interaction, violation_id: Optional[int]) -> None:
        if violation_id is None:
            await interaction.response.send_message("❌ Unknown violation.", ephemeral=True)
            return

        guild = self._home_guild(interaction)
        channel = resolve_text_channel(guild, self.warning_system.audit_channel_id) if guild else None
        if channel is not None:
            try:
                await channel.send(
                    f"📝 {interaction.user.mention} (`{interaction.user.id}`) requested a review of violation #{violation_id}."
                )
            except discord.HTTPException as exc:
                logger.error(f"Failed to forward review request for violation #{violation_id}: {exc}")
            else:
                logger.info(f"Review requested for violation #{violation_id} by {interaction.user.id}")
                await interaction.response.send_message(
                    f"✅ Your review request for violation #{violation_id} was sent to the moderators.",
                    ephemeral=True,
                )
                return

        await interaction.response.send_message(
            f"📝 Please contact a moderator and mention violation #{violation_id}.",
            ephemeral=True,
        )


def setup(discord_bot_instance, warning_system: WarningSystem):
    """Register the StandingButtonsCog with the bot."""
    discord_bot_instance.add_cog(StandingButtonsCog(discord_bot_instance, warning_system))

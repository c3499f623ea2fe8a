"""Restriction listener Cog for Wardcord.

Routes the platform events that can break an active restriction (messages,
voice state changes, component interactions, nickname changes) to the
:class:`~wardcord.violations.enforcement.RestrictionEnforcer`.
"""

import discord
from discord.ext import commands

from wardcord.util.logger import get_logger
from wardcord.violations.enforcement import RestrictionEnforcer

logger = get_logger("restriction_listener_cog")


class RestrictionListenerCog(commands.Cog):
    """Cog forwarding enforcement-relevant events to the enforcer."""

    def __init__(self, discord_bot_instance, enforcer: RestrictionEnforcer):
        self.bot = discord_bot_instance
        self.enforcer = enforcer
        logger.info("Restriction listener cog loaded")

    @commands.Cog.listener(name='on_message')
    async def on_message(self, message: discord.Message):
        await self.enforcer.handle_message(message)

    @commands.Cog.listener(name='on_voice_state_update')
    async def on_voice_state_update(self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState):
        await self.enforcer.handle_voice_state(member, after)

    @commands.Cog.listener(name='on_interaction')
    async def on_interaction(self, interaction: discord.Interaction):
        await self.enforcer.handle_interaction(interaction)

    @commands.Cog.listener(name='on_member_update')
    async def on_member_update(self, before: discord.Member, after: discord.Member):
        await self.enforcer.handle_member_update(before, after)


def setup(discord_bot_instance, enforcer: RestrictionEnforcer):
    """Register the RestrictionListenerCog with the bot."""
    discord_bot_instance.add_cog(RestrictionListenerCog(discord_bot_instance, enforcer))

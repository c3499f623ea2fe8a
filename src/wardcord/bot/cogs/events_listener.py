"""Event listener Cog for Wardcord.

This cog handles bot lifecycle events (on_ready) and command error handling.
On the first ``on_ready`` it rehydrates the warning system from the backend
and starts the expiration sweeper.
"""

import discord
from discord.ext import commands

from wardcord.scheduler.expiration_sweeper import ExpirationSweeper
from wardcord.util.logger import get_logger
from wardcord.violations.warning_system import WarningSystem

logger = get_logger("events_listener_cog")


class EventsListenerCog(commands.Cog):
    """Cog containing bot lifecycle and command error handlers."""

    def __init__(self, discord_bot_instance, warning_system: WarningSystem, sweeper: ExpirationSweeper):
        self.bot = discord_bot_instance
        self.warning_system = warning_system
        self.sweeper = sweeper
        self._initialized = False
        logger.info("Events listener cog loaded")

    @commands.Cog.listener(name='on_ready')
    async def on_ready(self):
        """Handle bot startup: rehydrate restrictions and start the sweeper.

        Reconnects fire on_ready again; the startup work only runs once.
        """
        if self.bot.user:
            logger.info(f"Bot connected as {self.bot.user} (ID: {self.bot.user.id})")
        else:
            logger.warning("Bot partially connected, but user information not yet available.")

        if self._initialized:
            return
        self._initialized = True

        await self.bot.change_presence(
            status=discord.Status.online,
            activity=discord.Activity(type=discord.ActivityType.watching, name="for rule breakers"),
        )

        logger.info("Rehydrating warning system from backend...")
        try:
            await self.warning_system.rehydrate()
        except Exception as exc:
            logger.error(f"Rehydration failed, continuing with snapshot state: {exc}", exc_info=True)

        logger.info("Starting expiration sweeper...")
        self.sweeper.start()

    @commands.Cog.listener(name='on_application_command_error')
    async def on_application_command_error(self, application_context: discord.ApplicationContext, error: Exception):
        """Handle errors from application commands with logging and user feedback."""
        if isinstance(error, commands.CommandNotFound):
            return

        command_name = getattr(application_context.command, 'name', '<unknown>')
        logger.error(f"Error in command '{command_name}': {error}", exc_info=True)

        error_message = "A :bug: showed up while running this command."
        try:
            await application_context.respond(error_message, ephemeral=True)
        except discord.InteractionResponded:
            await application_context.followup.send(error_message, ephemeral=True)


def setup(discord_bot_instance, warning_system: WarningSystem, sweeper: ExpirationSweeper):
    """Register the EventsListenerCog with the bot."""
    discord_bot_instance.add_cog(EventsListenerCog(discord_bot_instance, warning_system, sweeper))

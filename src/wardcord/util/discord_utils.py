"""
discord_utils.py
================

Low-level Discord utility functions for Wardcord.

Stateless helpers for message deletion, DM delivery, member resolution,
permission checks and duration formatting. Every helper swallows and logs the
recoverable py-cord errors so enforcement paths never fail on a missing
permission or a user with closed DMs.
"""

import datetime
from typing import Optional, Union

import discord

from wardcord.datatypes.discord_datatypes import ChannelID, UserID
from wardcord.util.logger import get_logger

logger = get_logger("discord_utils")

# Human-friendly label for a permanent duration
PERMANENT_DURATION = "Permanent"


def is_ignored_author(author: Union[discord.User, discord.Member]) -> bool:
    """
    Check if an author should be ignored by enforcement handlers (bots, system users or non-members).

    Args:
        author (discord.User | discord.Member): The user or member to check.

    Returns:
        bool: True if the author is a bot, a system user or not a guild member.
    """
    return author.bot or getattr(author, "system", False) or not isinstance(author, discord.Member)


def has_elevated_permissions(member: Union[discord.User, discord.Member]) -> bool:
    """
    Check if a member has moderator-level privileges (administrator, manage guild, or moderate members).

    Args:
        member (discord.User | discord.Member): The member to evaluate.

    Returns:
        bool: True if the member has elevated permissions, False otherwise.
    """
    if not isinstance(member, discord.Member):
        return False

    perms = member.guild_permissions
    return any(
        getattr(perms, attr, False)
        for attr in (
            "administrator",
            "manage_guild",
            "moderate_members",
        )
    )


def bot_can_ban(guild: discord.Guild, member: discord.Member) -> bool:
    """Return True if the bot holds Ban Members and sits above ``member`` in the role hierarchy."""
    me = getattr(guild, "me", None)
    if me is None or not me.guild_permissions.ban_members:
        return False
    if member.id == guild.owner_id:
        return False
    return me.top_role > member.top_role


def format_duration(seconds: int) -> str:
    """
    Convert a duration in seconds to a human-readable string.

    Args:
        seconds (int): Duration in seconds; 0 means permanent.

    Returns:
        str: Human-readable duration string.
    """
    if seconds <= 0:
        return PERMANENT_DURATION
    elif seconds < 60:
        return f"{seconds} secs"
    elif seconds < 3600:
        mins = seconds // 60
        return f"{mins} mins"
    elif seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''}"
    else:
        days = seconds // 86400
        return f"{days} day{'s' if days != 1 else ''}"


def format_remaining(expires_at: Optional[datetime.datetime], now: Optional[datetime.datetime] = None) -> str:
    """Render the time left until ``expires_at`` (None means permanent)."""
    if expires_at is None:
        return PERMANENT_DURATION
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return format_duration(max(1, int((expires_at - now).total_seconds())))


def discord_timestamp(moment: Optional[datetime.datetime], style: str = "R") -> str:
    if moment is None:
        return PERMANENT_DURATION
    return f"<t:{int(moment.timestamp())}:{style}>"


async def safe_delete_message(message: discord.Message) -> bool:
    """
    Attempt to delete a Discord message, suppressing recoverable errors.

    Args:
        message (discord.Message): The message to delete.

    Returns:
        bool: True if deletion succeeded, False otherwise.
    """
    try:
        await message.delete()
        return True
    except discord.NotFound:
        return False
    except discord.Forbidden:
        logger.warning(f"No permission to delete message {message.id}")
    except discord.HTTPException as exc:
        logger.error(f"Error deleting message {message.id}: {exc}")
    return False


async def safe_send_dm(
    user: Union[discord.User, discord.Member],
    *,
    content: Optional[str] = None,
    embed: Optional[discord.Embed] = None,
    view: Optional[discord.ui.View] = None,
) -> bool:
    """
    DM a user, returning False when DMs are closed or delivery fails.
    """
    kwargs = {"content": content, "embed": embed}
    if view is not None:
        kwargs["view"] = view
    try:
        await user.send(**kwargs)
        return True
    except discord.Forbidden:
        logger.debug(f"Could not DM {user.id}: DMs disabled")
    except discord.HTTPException as exc:
        logger.warning(f"Failed to DM user {user.id}: {exc}")
    return False


async def resolve_member(guild: discord.Guild, user_id: UserID) -> Optional[discord.Member]:
    """Return the guild member from cache, falling back to an API fetch. None if they left."""
    member = guild.get_member(user_id.to_int())
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id.to_int())
    except discord.NotFound:
        return None
    except discord.HTTPException as exc:
        logger.warning(f"Failed to fetch member {user_id} in guild {guild.id}: {exc}")
        return None


def resolve_text_channel(guild: discord.Guild, channel_id: Optional[ChannelID]) -> Optional[discord.abc.Messageable]:
    if channel_id is None:
        return None
    channel = guild.get_channel(channel_id.to_int())
    if isinstance(channel, (discord.TextChannel, discord.Thread)):
        return channel
    return None

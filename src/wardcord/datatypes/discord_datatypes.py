"""
Type-safe wrapper classes for identifiers used by the warning system.

Two user identifiers coexist in this bot and must never be mixed:

- :class:`UserID` is the Discord snowflake of a member. The restriction cache,
  the rate limiter and every Discord API call are keyed by it.
- :class:`InternalUserID` is the numeric id the moderation backend assigns to
  a user. Violation records and backend calls are keyed by it.

Translation between the two happens in one place,
:class:`wardcord.violations.identity.IdentityBridge`.
"""

from __future__ import annotations

from typing import Union

import discord


class _Snowflake:
    """
    Shared behaviour for Discord snowflake wrappers.

    Snowflakes are 64-bit integers but travel as strings in JSON, so the value
    is stored as a normalised decimal string. Wrappers of *different* classes
    never compare equal, even for the same number.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, int, "_Snowflake"]) -> None:
        if isinstance(value, _Snowflake):
            if not isinstance(value, type(self)):
                raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}")
            self._value = value._value
        elif isinstance(value, bool):
            raise ValueError(f"Cannot create {type(self).__name__} from bool")
        elif isinstance(value, int):
            self._value = str(value)
        elif isinstance(value, str):
            # Validate that it's a valid integer string
            self._value = str(int(value.strip()))
        else:
            raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}: {value}")

    @classmethod
    def from_int(cls, value: int):
        return cls(value)

    def to_int(self) -> int:
        """Convert to an integer for Discord API calls."""
        return int(self._value)

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, type(self)):
            return self._value == other._value
        if isinstance(other, _Snowflake):
            return False
        if isinstance(other, str):
            return self._value == other
        if isinstance(other, int) and not isinstance(other, bool):
            return self._value == str(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._value))


class UserID(_Snowflake):
    """
    Type-safe wrapper for Discord user snowflake IDs.

    Example:
        >>> uid = UserID.from_int(123456789012345678)
        >>> uid.to_int()
        123456789012345678
        >>> str(uid)
        '123456789012345678'
    """

    __slots__ = ()

    @classmethod
    def from_user(cls, member: Union[discord.Member, discord.User]) -> "UserID":
        """Create a UserID from a Discord Member or User object."""
        return cls(member.id)


class GuildID(_Snowflake):
    """Type-safe wrapper for Discord guild snowflake IDs."""

    __slots__ = ()

    @classmethod
    def from_guild(cls, guild: discord.Guild) -> "GuildID":
        """Create a GuildID from a Discord Guild object."""
        return cls(guild.id)


class ChannelID(_Snowflake):
    """Type-safe wrapper for Discord channel snowflake IDs."""

    __slots__ = ()

    @classmethod
    def from_channel(cls, channel: discord.abc.Snowflake) -> "ChannelID":
        """Create a ChannelID from any Discord channel object."""
        return cls(channel.id)


class InternalUserID(_Snowflake):
    """
    Backend-assigned numeric user id.

    Violations carry this id in ``userId``. It is *not* a Discord snowflake and
    must be translated through the identity bridge before touching Discord.
    ``InternalUserID(0)`` is the system user used for automatic actions.
    """

    __slots__ = ()

    @classmethod
    def system(cls) -> "InternalUserID":
        return cls(0)

    def is_system(self) -> bool:
        return self._value == "0"

"""
Shared data types.

- **discord_datatypes.py**: Type-safe snowflake wrappers (``UserID``,
  ``GuildID``, ``ChannelID``) and the backend ``InternalUserID``.
- **violation_datatypes.py**: Violation enums, dataclasses and wire parsing.
"""

"""
Utility functions and helpers for Wardcord.

- **logger.py**: Centralized logging configuration with colored console output,
  rotating file handlers, and per-session log aggregation. Suppresses noise from
  Discord and HTTP client internals. Uses prompt_toolkit for console output.

- **discord_utils.py**: Low-level Discord API helpers for permission checks,
  message deletion, DM delivery, member resolution and duration formatting.
"""

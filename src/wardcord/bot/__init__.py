"""Discord-facing layer of Wardcord: cogs registered by ``wardcord.main``."""

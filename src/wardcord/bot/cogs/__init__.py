"""
Cogs package for Wardcord.
Each module defines a cog class and a setup function to register it with the bot.
The cogs are loaded explicitly in main.py and receive the shared runtime objects
(warning system, enforcer, sweeper) through their setup functions.
"""

"""
Wardcord
========

A Discord bot that issues violations, derives per-user feature restrictions,
enforces them on every relevant platform event and expires them on a
schedule. Violations, users and suspensions live in an external moderation
backend; this process keeps only the restriction cache and its snapshot.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. WARDCORD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("WARDCORD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from dataclasses import dataclass

import discord
from dotenv import load_dotenv

from wardcord.configuration.app_configuration import app_config
from wardcord.rpc.backend_client import BackendClient
from wardcord.scheduler.expiration_sweeper import ExpirationSweeper
from wardcord.util.logger import get_logger, handle_exception
from wardcord.violations.enforcement import MessageRateLimiter, RestrictionEnforcer
from wardcord.violations.warning_system import WarningSystem


logger = get_logger("main")


@dataclass
class Runtime:
    """Long-lived objects created at startup and shared with the cogs."""

    bot: discord.Bot
    backend: BackendClient
    warning_system: WarningSystem
    enforcer: RestrictionEnforcer
    sweeper: ExpirationSweeper


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Construct the Discord intents required by the enforcement handlers.

    Members are needed for rehydration and nickname enforcement, message
    content for link detection and voice states for voice restrictions.
    """
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    intents.members = True
    intents.voice_states = True
    return intents


def load_cogs(runtime: Runtime) -> None:
    """Register all operational cogs with the runtime's bot."""
    from wardcord.bot.cogs import events_listener, restriction_listener, standing_buttons, violation_cmds

    events_listener.setup(runtime.bot, runtime.warning_system, runtime.sweeper)
    restriction_listener.setup(runtime.bot, runtime.enforcer)
    standing_buttons.setup(runtime.bot, runtime.warning_system)
    violation_cmds.setup(runtime.bot, runtime.warning_system)

    logger.info("All cogs loaded successfully.")


def create_runtime() -> Runtime:
    """Instantiate the bot and the warning system, and register all cogs.

    Raises
    ------
    ValueError
        If the standing thresholds in the configuration are invalid.
    """
    bot = discord.Bot(intents=build_intents())
    backend = BackendClient(app_config.backend_url, timeout=app_config.backend_timeout)
    warning_system = WarningSystem(bot, backend, config=app_config)
    rate_limiter = MessageRateLimiter(
        limit=app_config.message_rate_limit,
        window_seconds=app_config.rate_limit_window_seconds,
    )
    runtime = Runtime(
        bot=bot,
        backend=backend,
        warning_system=warning_system,
        enforcer=RestrictionEnforcer(warning_system, rate_limiter),
        sweeper=ExpirationSweeper(
            warning_system,
            lambda: app_config.expiration_check_interval_minutes * 60,
            rate_limiter,
        ),
    )
    load_cogs(runtime)
    return runtime


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and handle lifecycle logging around the connection."""
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(runtime: Runtime) -> None:
    """Stop the sweeper, persist restrictions, close the backend client and the bot."""
    try:
        await runtime.sweeper.shutdown()
    except Exception as exc:
        logger.exception("Error during sweeper shutdown: %s", exc)

    await runtime.warning_system.save_snapshot()

    try:
        await runtime.backend.close()
    except Exception as exc:
        logger.exception("Error while closing backend client: %s", exc)

    if not runtime.bot.is_closed():
        await runtime.bot.close()

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the runtime, returning a process exit code."""
    token = load_environment()

    try:
        runtime = create_runtime()
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        return 1

    await runtime.warning_system.load_snapshot()

    exit_code = 0
    try:
        await start_bot(runtime.bot, token)
    except discord.LoginFailure as exc:
        logger.critical("Discord rejected the bot token: %s", exc)
        exit_code = 1
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(runtime)

    return exit_code


def main() -> int:
    """Entrypoint that orchestrates the async runtime and returns the process code."""
    logger.info("Starting Wardcord…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    sys.exit(main())

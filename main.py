# Main File

import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import discord
import dotenv

from speech_relay.context import Context
from speech_relay.services.constructor import construct_services_manager
from speech_relay.utils import parse_id_list

dotenv.load_dotenv(dotenv_path=".env.local")

# Configure Python's built-in logging for bot startup
# (before AsyncLoggingService is available)
logs_dir = Path(os.getenv("LOG_DIR", "logs"))
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

# Configure logging to output to both console and file
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

# -------------------------------------------------------------- #
# Discord Bot Setup
# -------------------------------------------------------------- #

# Guild ids for instant command registration during development.
# Leave DEBUG_GUILD_IDS unset for global commands (takes up to 1 hour to register)
DEBUG_GUILD_IDS = parse_id_list(os.getenv("DEBUG_GUILD_IDS"))

intents = discord.Intents.default()
intents.voice_states = True
intents.members = True  # Speaker display names and avatars

bot = discord.Bot(intents=intents, debug_guilds=DEBUG_GUILD_IDS or None)


async def load_cogs(context: Context):
    """Load all cog extensions with context.

    Args:
        context: The application context instance
    """
    from cogs.voice import setup as setup_voice

    setup_voice(context)
    await context.services_manager.logging_service.info("✓ Loaded cogs.voice")


# -------------------------------------------------------------- #
# Events
# -------------------------------------------------------------- #


@bot.event
async def on_ready():
    """Called when the bot is ready and connected to Discord."""
    logger = bot.context.services_manager.logging_service

    await logger.info(f"Logged in as {bot.user.name} (ID: {bot.user.id})")
    await logger.info("------")
    await logger.info(f"Connected to {len(bot.guilds)} guild(s):")
    for guild in bot.guilds:
        await logger.info(f"  ✓ {guild.name} (ID: {guild.id})")

    await logger.info("Registered slash commands:")
    slash_commands = [
        cmd for cmd in bot.pending_application_commands if isinstance(cmd, discord.SlashCommand)
    ]
    for cmd in slash_commands:
        await logger.info(f"  ✓ /{cmd.name} - {cmd.description}")

    if DEBUG_GUILD_IDS:
        await logger.info(f"⚠️  Commands registered for guilds: {DEBUG_GUILD_IDS}")
    else:
        await logger.info("⚠️  Commands registered GLOBALLY (can take up to 1 hour to appear)")

    if not bot.context.services_manager.recognizer_service_manager.is_ready():
        await logger.warning("Recognizer model is not loaded; /join will fail until it is")


@bot.event
async def on_application_command_error(
    ctx: discord.ApplicationContext, error: discord.DiscordException
):
    """Handle errors in application commands."""
    logger = bot.context.services_manager.logging_service
    await logger.error(f"Error in command {ctx.command.name}: {error}")

    if isinstance(error, discord.CheckFailure):
        await ctx.respond("❌ You don't have permission to use this command.", ephemeral=True)
    else:
        await ctx.respond(f"❌ An error occurred: {str(error)}", ephemeral=True)


# -------------------------------------------------------------- #
# Run Bot
# -------------------------------------------------------------- #


async def main():
    """Main function to start services, load cogs and run the bot."""
    # We need to print to console initially since logging service isn't set up yet
    print("=" * 40)
    print("Starting services...")

    context = Context()

    # Use the same log file that was created for built-in logging
    services_manager = construct_services_manager(
        context=context,
        default_logging_path=str(logs_dir),
        log_file=log_file.name,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")

    context.set_bot(bot)

    # Store context on bot for access in events
    bot.context = context

    # -------------------------------------------------------------- #
    # Start Discord Bot
    # -------------------------------------------------------------- #

    token = os.getenv("DISCORD_API_TOKEN")
    if not token:
        await logger.error("Error: DISCORD_API_TOKEN not found in environment variables")
        await services_manager.shutdown_all()
        return

    try:
        async with bot:
            await load_cogs(context)
            await bot.start(token)
    finally:
        await services_manager.shutdown_all(timeout=30.0)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Interrupted, bot stopped")

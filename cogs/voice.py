import asyncio
import logging

import discord
from discord.ext import commands

from speech_relay.context import Context
from speech_relay.services.manager import ServicesManager

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Voice(commands.Cog):
    """Voice transcription commands."""

    def __init__(self, bot: discord.Bot, services: ServicesManager):
        self.bot = bot
        self.services = services

    # -------------------------------------------------------------- #
    # Utils
    # -------------------------------------------------------------- #

    def find_user_vc(self, ctx: discord.ApplicationContext) -> discord.VoiceChannel | None:
        """Find a voice channel the user is in.

        Args:
            ctx: Discord application context

        Returns:
            Voice channel if user is connected, None otherwise
        """
        voice = getattr(ctx.author, "voice", None)
        return voice.channel if voice else None

    def get_bot_voice_client(self, guild: discord.Guild | None) -> discord.VoiceClient | None:
        """Get the bot's voice client in a guild, if connected."""
        if guild is None:
            return None

        client = guild.voice_client
        if client and client.is_connected():
            return client
        return None

    async def disconnect_existing(self, guild: discord.Guild) -> None:
        """Stop any running transcription and leave voice in this guild."""
        transcriber = self.services.transcriber_service_manager
        if transcriber.is_transcribing(guild.id):
            await transcriber.stop_session(guild.id)

        voice_client = guild.voice_client
        if voice_client is not None:
            try:
                await voice_client.disconnect(force=True)
            except discord.DiscordException as e:
                logger.warning(f"Error dropping previous voice connection in {guild.id}: {e}")

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(name="join", description="Start translating speech to text.")
    @discord.option(
        "vc",
        discord.VoiceChannel,
        description="Voice channel to join",
        required=False,
        default=None,
    )
    async def join(
        self, ctx: discord.ApplicationContext, vc: discord.VoiceChannel | None = None
    ) -> None:
        """Join a voice channel and relay everyone's speech into this text channel.

        Args:
            ctx: Discord application context
            vc: Voice channel to join (defaults to the caller's channel)
        """
        if ctx.guild is None or not isinstance(ctx.author, discord.Member):
            await ctx.respond("❌ This command is only available in a guild.")
            return

        voice_channel = vc or self.find_user_vc(ctx)
        if voice_channel is None:
            await ctx.respond(
                "❌ No voice channel given, and you are not in one.", ephemeral=True
            )
            return

        if not isinstance(voice_channel, discord.VoiceChannel):
            await ctx.respond("❌ That is not a voice channel.", ephemeral=True)
            return

        if not isinstance(ctx.channel, discord.TextChannel):
            await ctx.respond("❌ This command can only be used in a text channel.", ephemeral=True)
            return

        if not voice_channel.permissions_for(ctx.guild.me).connect:
            await ctx.respond("❌ I can't connect to that voice channel.", ephemeral=True)
            return

        if self.services.transcriber_service_manager is None:
            await ctx.respond("❌ Transcription service is not available.", ephemeral=True)
            return

        await ctx.defer()

        logger.info(
            f"Join requested by {ctx.author.id} in guild {ctx.guild.id}: "
            f"voice {voice_channel.id}, text {ctx.channel.id}"
        )

        # Only one connection per guild
        await self.disconnect_existing(ctx.guild)

        try:
            voice_client = await voice_channel.connect(timeout=10.0, reconnect=True)
        except (discord.DiscordException, asyncio.TimeoutError) as e:
            await ctx.followup.send(f"❌ Failed to connect to voice channel: {e}")
            return

        session = await self.services.transcriber_service_manager.start_session(
            discord_voice_client=voice_client,
            text_channel=ctx.channel,
            guild=ctx.guild,
        )
        if session is None:
            await voice_client.disconnect(force=True)
            await ctx.followup.send("❌ Failed to start speech recognition.")
            return

        await ctx.followup.send(
            f"✅ Connected to {voice_channel.mention}. Speech recognition started."
        )

    @commands.slash_command(name="bye", description="End translating speech to text.")
    async def bye(self, ctx: discord.ApplicationContext) -> None:
        """Stop transcribing and leave the voice channel.

        Args:
            ctx: Discord application context
        """
        if ctx.guild is None:
            await ctx.respond("❌ This command is only available in a guild.")
            return

        voice_client = self.get_bot_voice_client(ctx.guild)
        transcriber = self.services.transcriber_service_manager
        if voice_client is None and not (transcriber and transcriber.is_transcribing(ctx.guild.id)):
            await ctx.respond("❌ Not connected to a voice channel.", ephemeral=True)
            return

        await self.disconnect_existing(ctx.guild)
        logger.info(f"Left voice in guild {ctx.guild.id} at request of {ctx.author.id}")

        await ctx.respond("👋 Disconnected from voice. Speech recognition ended.")

    # -------------------------------------------------------------- #
    # Debug Functions
    # -------------------------------------------------------------- #

    @commands.slash_command(
        name="debug_active_sessions", description="Debug: List active transcription sessions"
    )
    async def debug_active_sessions(self, ctx: discord.ApplicationContext) -> None:
        """List all active transcription sessions."""
        sessions = self.services.transcriber_service_manager.list_active_sessions()
        if len(sessions) == 0:
            await ctx.respond("No active transcription sessions found.", ephemeral=True)
            return

        session_list = []
        for status in sessions:
            session_list.append(
                f"Guild ID: {status['connection_id']}, "
                f"speaking: {status['speaking']}, pipelines: {status['active_pipelines']}"
            )

        await ctx.respond(
            "Active transcription sessions:\n" + "\n".join(session_list), ephemeral=True
        )


def setup(context: Context) -> Voice:
    voice = Voice(context.bot, context.services_manager)
    context.bot.add_cog(voice)
    return voice

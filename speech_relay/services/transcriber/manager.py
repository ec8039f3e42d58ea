from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from speech_relay.context import Context

from speech_relay.services.discord_receiver.resolver import GuildMemberResolver
from speech_relay.services.discord_receiver.sink import SpeechReceiveSink
from speech_relay.services.manager import BaseTranscriberServiceManager, ServicesManager
from speech_relay.services.relay_manager.manager import ChannelWebhookRelay
from speech_relay.services.transcriber.connection import TranscriptionConnection
from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.errors import RecognizerUnavailableError
from speech_relay.services.transcriber.formatter import TranscriptFormatter

# -------------------------------------------------------------- #
# Transcriber Manager Service
# -------------------------------------------------------------- #


@dataclass
class TranscriptionSession:
    """A live transcription in one guild."""

    guild_id: int
    voice_client: discord.VoiceClient
    text_channel: discord.TextChannel
    sink: SpeechReceiveSink
    connection: TranscriptionConnection


class TranscriberManagerService(BaseTranscriberServiceManager):
    """
    Manager for live transcription sessions.

    This class manages:
    - One transcription session per guild
    - Wiring a voice client's receive sink into a TranscriptionConnection
    - Tearing sessions down on /bye, on voice disconnect and on shutdown
    """

    def __init__(
        self,
        context: "Context",
        silence_ms: int = TranscriptionConstants.SILENCE_DURATION_MS,
        formatter: TranscriptFormatter | None = None,
    ):
        super().__init__(context)

        self.silence_ms = silence_ms
        self.formatter = formatter or TranscriptFormatter()
        self.sessions: dict[int, TranscriptionSession] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"TranscriberManagerService started (silence {self.silence_ms}ms, "
            f"marker {self.formatter.segment_marker!r})"
        )

    async def on_close(self) -> bool:
        for guild_id in list(self.sessions.keys()):
            await self.stop_session(guild_id)

        await self.services.logging_service.info("TranscriberManagerService stopped")
        return True

    # -------------------------------------------------------------- #
    # Session Management Methods
    # -------------------------------------------------------------- #

    async def start_session(
        self,
        discord_voice_client: discord.VoiceClient,
        text_channel: discord.TextChannel,
        guild: discord.Guild,
    ) -> TranscriptionSession | None:
        """
        Start transcribing the voice channel the client is connected to.

        An existing session in the same guild is stopped first.

        Args:
            discord_voice_client: Connected VoiceClient to receive audio from
            text_channel: Channel the transcripts are relayed into
            guild: Guild whose members are being transcribed

        Returns:
            The new session, or None if it could not be started
        """
        logging_service = self.services.logging_service

        if self.context.is_shutting_down():
            await logging_service.warning("Refusing to start a session during shutdown")
            return None

        if guild.id in self.sessions:
            await self.stop_session(guild.id)

        try:
            registry = self.services.recognizer_service_manager.create_registry()
        except RecognizerUnavailableError as e:
            await logging_service.error(f"Cannot start transcription in guild {guild.id}: {e}")
            return None

        relay_service = self.services.relay_service_manager
        try:
            await relay_service.get_webhook(text_channel)
        except discord.HTTPException as e:
            await logging_service.error(
                f"Cannot get a relay webhook for channel {text_channel.id}: {e}"
            )
            return None

        sample_rate = self.services.recognizer_service_manager.get_sample_rate()
        ffmpeg_service = self.services.ffmpeg_service_manager

        sink = SpeechReceiveSink()
        connection = TranscriptionConnection(
            connection_id=guild.id,
            audio_source=sink,
            registry=registry,
            resolver=GuildMemberResolver(guild),
            relay=ChannelWebhookRelay(relay_service, text_channel),
            transcoder_factory=lambda: ffmpeg_service.create_transcode_stream(sample_rate),
            logging_service=logging_service,
            formatter=self.formatter,
            silence_ms=self.silence_ms,
        )

        try:
            discord_voice_client.start_recording(
                sink, self._recording_finished_callback, guild.id, sync_start=False
            )
        except discord.sinks.RecordingException as e:
            await connection.disconnect()
            await logging_service.error(f"Failed to start receiving audio in guild {guild.id}: {e}")
            return None

        session = TranscriptionSession(
            guild_id=guild.id,
            voice_client=discord_voice_client,
            text_channel=text_channel,
            sink=sink,
            connection=connection,
        )
        self.sessions[guild.id] = session

        await logging_service.info(
            f"Started transcription in guild {guild.id}, "
            f"voice channel {discord_voice_client.channel.id}, text channel {text_channel.id}"
        )
        return session

    async def stop_session(self, guild_id: int) -> bool:
        """
        Stop transcribing in a guild.

        In-flight utterances are discarded without relaying anything.

        Returns:
            True if a session was stopped
        """
        session = self.sessions.pop(guild_id, None)
        if session is None:
            await self.services.logging_service.warning(f"No active session for guild {guild_id}")
            return False

        # Cancel pipelines first, so the sink closing does not finalize them
        await session.connection.disconnect()

        if session.voice_client.recording:
            with suppress(discord.sinks.RecordingException):
                session.voice_client.stop_recording()

        await self.services.logging_service.info(f"Stopped transcription in guild {guild_id}")
        return True

    async def _recording_finished_callback(self, sink: SpeechReceiveSink, guild_id: int) -> None:
        """py-cord calls this when receiving stops, including on voice disconnect."""
        session = self.sessions.get(guild_id)
        if session is not None and session.sink is sink:
            await self.services.logging_service.info(
                f"Voice receive ended in guild {guild_id}; stopping transcription"
            )
            await self.stop_session(guild_id)

    # -------------------------------------------------------------- #
    # Status Methods
    # -------------------------------------------------------------- #

    def get_active_session(self, guild_id: int) -> TranscriptionSession | None:
        return self.sessions.get(guild_id)

    def is_transcribing(self, guild_id: int) -> bool:
        return guild_id in self.sessions

    def list_active_sessions(self) -> list[dict]:
        return [session.connection.get_status() for session in self.sessions.values()]

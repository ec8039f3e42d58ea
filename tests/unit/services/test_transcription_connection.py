"""
Unit tests for the transcription connection and the transcriber manager service.

Tests cover:
- Activity signals from the audio source reach the scheduler
- Teardown with speakers mid-utterance (nothing relayed, everything released)
- Idempotent disconnect
- Session start/stop through TranscriberManagerService
"""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from speech_relay.context import Context
from speech_relay.services.discord_receiver.sink import SpeechReceiveSink
from speech_relay.services.recognizer_manager.manager import RecognizerSessionRegistry
from speech_relay.services.transcriber.connection import TranscriptionConnection
from speech_relay.services.transcriber.errors import RecognizerUnavailableError
from speech_relay.services.transcriber.manager import TranscriberManagerService


@pytest.fixture
def registry(make_recognizer):
    return RecognizerSessionRegistry(make_recognizer)


@pytest.fixture
def connection(audio_source, registry, resolver, relay, transcoders, logging_service):
    return TranscriptionConnection(
        connection_id=111222333,
        audio_source=audio_source,
        registry=registry,
        resolver=resolver,
        relay=relay,
        transcoder_factory=transcoders,
        logging_service=logging_service,
        silence_ms=1000,
    )


# ============================================================================
# Connection Tests
# ============================================================================


@pytest.mark.unit
class TestTranscriptionConnection:
    """Test the per-connection wiring and teardown."""

    async def test_source_activity_starts_pipeline(self, connection, audio_source, eventually):
        audio_source.signal_activity(1)

        await eventually(lambda: 1 in connection.scheduler.get_active_pipelines())
        assert 1 in connection.lock_set

        await connection.disconnect()

    async def test_disconnect_mid_utterance_discards_everything(
        self, connection, audio_source, registry, transcoders, relay, eventually, frame
    ):
        alice_pipeline = await connection.scheduler.on_activity_start(1)
        bob_pipeline = await connection.scheduler.on_activity_start(2)
        alice_pipeline.recognizer.script(boundaries=["half a"], remainder="sentence")
        bob_pipeline.recognizer.script(remainder="interrupted")

        alice_pipeline.subscription.push(frame(1))
        bob_pipeline.subscription.push(frame(2))
        await eventually(lambda: len(transcoders.created) == 2)
        await eventually(lambda: all(stream.written for stream in transcoders.created))
        recognizers = [alice_pipeline.recognizer, bob_pipeline.recognizer]

        await connection.disconnect()

        assert relay.messages == []
        assert all(stream.terminated for stream in transcoders.created)
        assert len(connection.lock_set) == 0
        assert len(registry) == 0
        assert all(recognizer.closed for recognizer in recognizers)
        assert audio_source.closed
        assert connection.is_closed

    async def test_activity_after_disconnect_is_ignored(
        self, connection, audio_source, transcoders
    ):
        await connection.disconnect()

        audio_source.signal_activity(1)
        assert await connection.scheduler.on_activity_start(1) is None

        assert transcoders.created == []
        assert len(connection.lock_set) == 0

    async def test_disconnect_twice_is_safe(self, connection, logging_service):
        await connection.disconnect()
        await connection.disconnect()

        closed_logs = [m for m in logging_service.messages("INFO") if "closed" in m]
        assert len(closed_logs) == 1

    async def test_get_status(self, connection):
        pipeline = await connection.scheduler.on_activity_start(1)

        status = connection.get_status()

        assert status["connection_id"] == 111222333
        assert status["speaking"] == [1]
        assert status["active_pipelines"] == 1
        assert status["recognizers"] == 1
        assert pipeline is not None

        await connection.disconnect()


# ============================================================================
# Transcriber Manager Service Tests
# ============================================================================


@pytest.fixture
async def transcriber(mock_services, make_recognizer):
    """TranscriberManagerService wired to mocked engines."""
    recognizer_service = MagicMock()
    recognizer_service.create_registry = MagicMock(
        side_effect=lambda: RecognizerSessionRegistry(make_recognizer)
    )
    recognizer_service.get_sample_rate = MagicMock(return_value=16000)
    mock_services.recognizer_service_manager = recognizer_service

    mock_services.relay_service_manager = MagicMock()
    mock_services.relay_service_manager.get_webhook = AsyncMock()

    mock_services.ffmpeg_service_manager = MagicMock()

    manager = TranscriberManagerService(context=Context(), silence_ms=500)
    await manager.on_start(mock_services)
    return manager


@pytest.mark.unit
class TestTranscriberManagerService:
    """Test session management per guild."""

    async def test_start_session_begins_recording(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild
    ):
        session = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)

        assert session is not None
        assert isinstance(session.sink, SpeechReceiveSink)
        assert transcriber.is_transcribing(mock_guild.id)
        mock_voice_client.start_recording.assert_called_once()
        assert mock_voice_client.start_recording.call_args.args[0] is session.sink
        transcriber.services.relay_service_manager.get_webhook.assert_awaited_once_with(
            mock_text_channel
        )

        await transcriber.on_close()

    async def test_stop_session_disconnects_and_stops_recording(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild
    ):
        session = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)

        assert await transcriber.stop_session(mock_guild.id)

        assert session.connection.is_closed
        mock_voice_client.stop_recording.assert_called_once()
        assert not transcriber.is_transcribing(mock_guild.id)

    async def test_stop_unknown_session_returns_false(self, transcriber):
        assert await transcriber.stop_session(42) is False

    async def test_start_replaces_existing_session(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild
    ):
        first = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)
        second = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)

        assert first.connection.is_closed
        assert transcriber.get_active_session(mock_guild.id) is second

        await transcriber.on_close()
        assert transcriber.sessions == {}

    async def test_start_without_model_fails(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild, logging_service
    ):
        transcriber.services.recognizer_service_manager.create_registry.side_effect = (
            RecognizerUnavailableError("Vosk model is not loaded")
        )

        session = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)

        assert session is None
        mock_voice_client.start_recording.assert_not_called()
        assert any("not loaded" in m for m in logging_service.messages("ERROR"))

    async def test_start_without_webhook_permission_fails(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild, response
    ):
        transcriber.services.relay_service_manager.get_webhook.side_effect = discord.Forbidden(
            response(403, "Forbidden"), "Missing Permissions"
        )

        session = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)

        assert session is None
        mock_voice_client.start_recording.assert_not_called()

    async def test_start_refused_during_shutdown(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild
    ):
        transcriber.context.mark_shutdown_started()

        assert (
            await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)
            is None
        )

    async def test_recording_callback_stops_matching_session(
        self, transcriber, mock_voice_client, mock_text_channel, mock_guild
    ):
        session = await transcriber.start_session(mock_voice_client, mock_text_channel, mock_guild)

        # A stale sink from an older session does nothing
        await transcriber._recording_finished_callback(object(), mock_guild.id)
        assert transcriber.is_transcribing(mock_guild.id)

        await transcriber._recording_finished_callback(session.sink, mock_guild.id)
        assert not transcriber.is_transcribing(mock_guild.id)
        assert session.connection.is_closed

"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.

The fakes below stand in for the pieces of a transcription connection that
touch the outside world (Discord, ffmpeg, Vosk) so the scheduler and the
utterance pipeline can be driven deterministically.
"""

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from speech_relay.services.audio.source import AudioSource
from speech_relay.services.audio.subscription import AudioSubscription
from speech_relay.services.discord_receiver.resolver import SpeakerResolver
from speech_relay.services.manager import BaseAsyncLoggingService
from speech_relay.services.recognizer_manager.manager import Recognizer
from speech_relay.services.relay_manager.manager import MessageRelay
from speech_relay.services.transcriber.errors import SpeakerResolutionError, TranscoderError
from speech_relay.services.transcriber.models import (
    RecognitionResult,
    Speaker,
    TranscriptMessage,
)

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom settings and markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply a timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


# ============================================================================
# Helpers
# ============================================================================


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` holds, failing the test after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition was not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually():
    """Provide the ``wait_until`` polling helper."""
    return wait_until


def pcm_frame(value: int = 1, samples: int = 4) -> bytes:
    """A tiny s16le frame; the fakes never look inside it."""
    return value.to_bytes(2, "little", signed=True) * samples


@pytest.fixture
def frame():
    """Provide the ``pcm_frame`` builder."""
    return pcm_frame


# ============================================================================
# Fakes
# ============================================================================


class FakeLoggingService(BaseAsyncLoggingService):
    """Keeps log records in memory instead of writing them."""

    def __init__(self):
        super().__init__(context=None)
        self.records: list[tuple[str, str]] = []

    async def log(self, message: str, level: str = "INFO") -> None:
        self.records.append((level, message))

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")

    def messages(self, level: str) -> list[str]:
        return [message for record_level, message in self.records if record_level == level]


class FakeRecognizer(Recognizer):
    """
    Scripted recognizer.

    Every accepted chunk commits the next text in ``boundaries`` as a finished
    segment, until the script runs out. ``remainder`` is what ``final_result``
    returns when no segment is pending (the trailing partial of an utterance).
    """

    def __init__(self, boundaries: list[str] | None = None, remainder: str = ""):
        self.boundaries = list(boundaries or [])
        self.remainder = remainder
        self.accepted: list[bytes] = []
        self.resets = 0
        self.closed = False
        self._pending: str | None = None

    def script(self, boundaries: list[str] | None = None, remainder: str = "") -> None:
        self.boundaries = list(boundaries or [])
        self.remainder = remainder

    def accept_waveform(self, chunk: bytes) -> bool:
        self.accepted.append(chunk)
        if self.boundaries:
            self._pending = self.boundaries.pop(0)
            return True
        return False

    def final_result(self) -> RecognitionResult:
        if self._pending is not None:
            text, self._pending = self._pending, None
            return RecognitionResult(text=text)
        text, self.remainder = self.remainder, ""
        return RecognitionResult(text=text)

    def reset(self) -> None:
        self.resets += 1

    def close(self) -> None:
        self.closed = True


_CRASH = object()


class FakeTranscodeStream:
    """
    In-memory transcoder: every written chunk comes straight back out.

    ``crash_after`` makes the output side fail with TranscoderError after that
    many chunks (and later writes fail like a broken pipe). ``spawn_error``
    makes entering the context manager fail.
    """

    def __init__(self, crash_after: int | None = None, spawn_error: Exception | None = None):
        self.crash_after = crash_after
        self.spawn_error = spawn_error
        self.written: list[bytes] = []
        self.opened = False
        self.input_closed = False
        self.terminated = False
        self._crashed = False
        self._output: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self) -> "FakeTranscodeStream":
        if self.spawn_error is not None:
            self.terminated = True
            raise self.spawn_error
        self.opened = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.terminate()

    async def write(self, data: bytes) -> None:
        if self._crashed or self.input_closed:
            raise TranscoderError("Transcoder input pipe broke")
        self.written.append(data)
        self._output.put_nowait(data)
        if self.crash_after is not None and len(self.written) >= self.crash_after:
            self._crashed = True
            self._output.put_nowait(_CRASH)

    async def close_input(self) -> None:
        self.input_closed = True
        self._output.put_nowait(None)

    async def iter_output(self):
        while True:
            chunk = await self._output.get()
            if chunk is _CRASH:
                raise TranscoderError("Transcoder exited with code 1")
            if chunk is None:
                return
            yield chunk

    async def terminate(self) -> None:
        self.terminated = True

    def get_status(self) -> dict:
        return {"running": self.opened and not self.terminated, "bytes_in": len(self.written)}


class FakeTranscoderFactory:
    """Hands out prepared streams first, then fresh default ones; remembers them all."""

    def __init__(self):
        self.prepared: list[FakeTranscodeStream] = []
        self.created: list[FakeTranscodeStream] = []

    def prepare(self, **kwargs) -> FakeTranscodeStream:
        stream = FakeTranscodeStream(**kwargs)
        self.prepared.append(stream)
        return stream

    def __call__(self) -> FakeTranscodeStream:
        stream = self.prepared.pop(0) if self.prepared else FakeTranscodeStream()
        self.created.append(stream)
        return stream


class FakeAudioSource(AudioSource):
    """Audio source whose subscriptions the test feeds by hand."""

    def __init__(self):
        self.subscriptions: dict[int, AudioSubscription] = {}
        self.subscribe_calls: list[int] = []
        self.closed = False

    def subscribe(self, speaker_id: int, silence_ms: int) -> AudioSubscription:
        self.subscribe_calls.append(speaker_id)
        subscription = AudioSubscription(speaker_id, silence_ms)
        self.subscriptions[speaker_id] = subscription
        return subscription

    def close(self) -> None:
        self.closed = True
        for subscription in self.subscriptions.values():
            subscription.close("source closed")


class FakeResolver(SpeakerResolver):
    """Resolves from a fixed roster; ``gate`` holds every lookup until it is set."""

    def __init__(self, speakers: dict[int, Speaker]):
        self.speakers = speakers
        self.calls: list[int] = []
        self.gate: asyncio.Event | None = None

    async def resolve(self, speaker_id: int) -> Speaker:
        self.calls.append(speaker_id)
        if self.gate is not None:
            await self.gate.wait()
        speaker = self.speakers.get(speaker_id)
        if speaker is None:
            raise SpeakerResolutionError(speaker_id, "not a member of the guild")
        return speaker


class FakeRelay(MessageRelay):
    """Collects relayed messages; ``error`` makes every send fail."""

    def __init__(self):
        self.messages: list[TranscriptMessage] = []
        self.error: Exception | None = None

    async def send(self, message: TranscriptMessage) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append(message)


# ============================================================================
# Fake Fixtures
# ============================================================================

ALICE = Speaker(id=1, display_name="alice", avatar_url="https://cdn.example/alice.png")
BOB = Speaker(id=2, display_name="bob")
MUSIC_BOT = Speaker(id=99, display_name="jukebox", is_bot=True)


@pytest.fixture
def alice() -> Speaker:
    return ALICE


@pytest.fixture
def bob() -> Speaker:
    return BOB


@pytest.fixture
def logging_service() -> FakeLoggingService:
    return FakeLoggingService()


@pytest.fixture
def make_recognizer():
    """Provide the FakeRecognizer class."""
    return FakeRecognizer


@pytest.fixture
def make_stream():
    """Provide the FakeTranscodeStream class."""
    return FakeTranscodeStream


@pytest.fixture
def transcoders() -> FakeTranscoderFactory:
    return FakeTranscoderFactory()


@pytest.fixture
def audio_source() -> FakeAudioSource:
    return FakeAudioSource()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({s.id: s for s in (ALICE, BOB, MUSIC_BOT)})


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


# ============================================================================
# Mock Discord Fixtures
# ============================================================================


@pytest.fixture
def mock_services(logging_service: FakeLoggingService) -> MagicMock:
    """A ServicesManager stand-in with the in-memory logging service."""
    services = MagicMock()
    services.logging_service = logging_service
    return services


@pytest.fixture
def mock_text_channel() -> MagicMock:
    """Create a mock Discord text channel."""
    channel = MagicMock()
    channel.id = 777888999
    channel.name = "transcripts"
    channel.webhooks = AsyncMock(return_value=[])
    channel.create_webhook = AsyncMock()
    return channel


@pytest.fixture
def mock_voice_client() -> MagicMock:
    """Create a mock py-cord voice client that is connected and can record."""
    client = MagicMock()
    client.channel = MagicMock()
    client.channel.id = 444555666
    client.recording = False
    client.is_connected = MagicMock(return_value=True)
    client.disconnect = AsyncMock()

    def start_recording(sink, callback, *args, sync_start=False):
        client.recording = True

    def stop_recording():
        client.recording = False

    client.start_recording = MagicMock(side_effect=start_recording)
    client.stop_recording = MagicMock(side_effect=stop_recording)
    return client


@pytest.fixture
def mock_guild() -> MagicMock:
    """Create a mock Discord guild."""
    guild = MagicMock()
    guild.id = 111222333
    guild.name = "Test Guild"
    guild.get_member = MagicMock(return_value=None)
    guild.fetch_member = AsyncMock()
    return guild


def http_response(status: int, reason: str) -> MagicMock:
    """Response object accepted by discord.HTTPException and its subclasses."""
    response = MagicMock()
    response.status = status
    response.reason = reason
    return response


@pytest.fixture
def response():
    """Provide the ``http_response`` builder."""
    return http_response

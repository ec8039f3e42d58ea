"""
Unit tests for the Discord receive adapters.

Tests cover:
- Member lookup (cache, fetch, members who left)
- The recording sink: routing frames, activity signals, pre-roll replay,
  thread hand-off and closing
"""

import asyncio
import threading
from unittest.mock import MagicMock

import discord
import pytest

from speech_relay.services.discord_receiver.resolver import (
    GuildMemberResolver,
    speaker_from_member,
)
from speech_relay.services.discord_receiver.sink import SpeechReceiveSink
from speech_relay.services.transcriber.errors import SpeakerResolutionError


def make_member(member_id: int, name: str, bot: bool = False, avatar_url: str | None = None):
    member = MagicMock()
    member.id = member_id
    member.display_name = name
    member.bot = bot
    if avatar_url is None:
        member.avatar = None
    else:
        member.avatar = MagicMock()
        member.avatar.url = avatar_url
    return member


# ============================================================================
# Resolver Tests
# ============================================================================


@pytest.mark.unit
class TestGuildMemberResolver:
    """Test resolving speaker ids to guild members."""

    async def test_cached_member(self, mock_guild):
        mock_guild.get_member.return_value = make_member(1, "alice", avatar_url="https://a/1.png")

        speaker = await GuildMemberResolver(mock_guild).resolve(1)

        assert speaker.display_name == "alice"
        assert speaker.avatar_url == "https://a/1.png"
        assert not speaker.is_bot
        mock_guild.fetch_member.assert_not_awaited()

    async def test_fetches_uncached_member(self, mock_guild):
        mock_guild.fetch_member.return_value = make_member(2, "bob")

        speaker = await GuildMemberResolver(mock_guild).resolve(2)

        assert speaker.id == 2
        assert speaker.avatar_url is None
        mock_guild.fetch_member.assert_awaited_once_with(2)

    async def test_member_who_left(self, mock_guild, response):
        mock_guild.fetch_member.side_effect = discord.NotFound(
            response(404, "Not Found"), "Unknown Member"
        )

        with pytest.raises(SpeakerResolutionError) as excinfo:
            await GuildMemberResolver(mock_guild).resolve(3)

        assert excinfo.value.speaker_id == 3

    async def test_http_error(self, mock_guild, response):
        mock_guild.fetch_member.side_effect = discord.HTTPException(
            response(503, "Unavailable"), "try later"
        )

        with pytest.raises(SpeakerResolutionError):
            await GuildMemberResolver(mock_guild).resolve(4)

    def test_bot_member(self):
        assert speaker_from_member(make_member(5, "jukebox", bot=True)).is_bot


# ============================================================================
# Sink Tests
# ============================================================================


@pytest.fixture
async def sink():
    sink = SpeechReceiveSink(loop=asyncio.get_running_loop(), preroll_frames=3)
    sink.activity = []
    sink.set_activity_callback(sink.activity.append)
    yield sink
    sink.close()


@pytest.mark.unit
class TestSpeechReceiveSink:
    """Test routing of py-cord voice packets."""

    async def test_first_frame_signals_activity_and_is_buffered(self, sink):
        sink.dispatch(1, b"a")
        sink.dispatch(1, b"b")

        assert sink.activity == [1, 1]

        subscription = sink.subscribe(1, silence_ms=1000)
        subscription.close()
        frames = [f async for f in subscription]

        assert frames == [b"a", b"b"]

    async def test_preroll_keeps_most_recent_frames(self, sink):
        for data in (b"1", b"2", b"3", b"4", b"5"):
            sink.dispatch(7, data)

        subscription = sink.subscribe(7, silence_ms=1000)
        subscription.close()

        assert [f async for f in subscription] == [b"3", b"4", b"5"]

    async def test_live_subscription_receives_frames_without_signal(self, sink):
        subscription = sink.subscribe(1, silence_ms=1000)

        sink.dispatch(1, b"x")
        sink.dispatch(2, b"y")

        assert sink.activity == [2]
        assert subscription.frames_received == 1
        assert sink.get_live_speakers() == [1]

    async def test_subscription_ending_unregisters(self, sink):
        subscription = sink.subscribe(1, silence_ms=10)
        assert [f async for f in subscription] == []

        sink.dispatch(1, b"again")

        assert sink.get_live_speakers() == []
        assert sink.activity == [1]

    async def test_write_from_decoder_thread(self, sink, eventually):
        worker = threading.Thread(target=sink.write, args=(bytearray(b"pcm"), 9))
        worker.start()
        worker.join()

        await eventually(lambda: sink.activity == [9])

    async def test_close_ends_subscriptions_and_ignores_frames(self, sink):
        subscription = sink.subscribe(1, silence_ms=1000)

        sink.close()
        sink.dispatch(1, b"late")
        sink.dispatch(2, b"late")

        assert subscription.closed
        assert [f async for f in subscription] == []
        assert sink.activity == []

    async def test_cleanup_closes_on_loop(self, sink, eventually):
        subscription = sink.subscribe(1, silence_ms=1000)

        sink.cleanup()

        assert sink.finished
        await eventually(lambda: subscription.closed)

    async def test_write_with_member_object(self, sink, eventually):
        sink.write(bytearray(b"pcm"), discord.Object(id=42))

        await eventually(lambda: sink.activity == [42])

    async def test_stale_preroll_is_dropped(self, sink):
        # Speech that ended while the previous utterance was still finalizing
        sink.dispatch(7, b"OLD-")
        await asyncio.sleep(0.15)
        sink.dispatch(7, b"NEW")

        subscription = sink.subscribe(7, silence_ms=100)
        subscription.close()

        assert [f async for f in subscription] == [b"NEW"]

    async def test_preroll_older_than_silence_window_is_dropped(self, sink):
        sink.dispatch(7, b"OLD")
        await asyncio.sleep(0.15)

        subscription = sink.subscribe(7, silence_ms=100)
        subscription.close()

        assert [f async for f in subscription] == []

    async def test_preroll_within_silence_window_is_kept(self, sink):
        sink.dispatch(7, b"a")
        await asyncio.sleep(0.02)
        sink.dispatch(7, b"b")

        subscription = sink.subscribe(7, silence_ms=500)
        subscription.close()

        assert [f async for f in subscription] == [b"a", b"b"]

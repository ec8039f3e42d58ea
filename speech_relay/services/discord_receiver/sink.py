import asyncio
import logging
import time
from collections import deque

import discord

from speech_relay.services.audio.decoder import PCM_CODEC
from speech_relay.services.audio.source import AudioSource
from speech_relay.services.audio.subscription import AudioSubscription
from speech_relay.services.transcriber.constants import TranscriptionConstants

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Speech Receive Sink
# -------------------------------------------------------------- #


class SpeechReceiveSink(discord.sinks.Sink, AudioSource):
    """
    py-cord recording sink that fans voice packets out per speaker.

    py-cord calls ``write`` from its decoder thread with 48kHz stereo PCM that
    it has already Opus-decoded. Every packet hops onto the event loop, goes to
    the speaker's live subscription, or raises an activity signal if the
    speaker has none. Packets that arrive while a pipeline is being set up are
    held in a short pre-roll buffer and replayed into the new subscription.
    Only the newest unbroken run of pre-roll is replayed: frames separated from
    it by more than the subscription's silence window belong to speech that
    already ended and are dropped.
    """

    frame_codec = PCM_CODEC

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        preroll_frames: int = TranscriptionConstants.PREROLL_FRAMES,
    ):
        super().__init__()
        self.loop = loop or asyncio.get_running_loop()
        self.preroll_frames = preroll_frames

        self._subscriptions: dict[int, AudioSubscription] = {}
        self._preroll: dict[int, deque[tuple[float, bytes]]] = {}
        self._closed = False

    # -------------------------------------------------------------- #
    # py-cord Sink Methods (decoder thread)
    # -------------------------------------------------------------- #

    def write(self, data, user):
        if self._closed or user is None or self.loop.is_closed():
            return
        # user is a bare id or a Member/User object
        speaker_id = int(getattr(user, "id", user))
        self.loop.call_soon_threadsafe(self.dispatch, speaker_id, bytes(data))

    def cleanup(self):
        self.finished = True
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.close)

    # -------------------------------------------------------------- #
    # Event Loop Methods
    # -------------------------------------------------------------- #

    def dispatch(self, speaker_id: int, frame: bytes) -> None:
        """Route one PCM frame to the speaker's subscription."""
        if self._closed:
            return

        subscription = self._subscriptions.get(speaker_id)
        if subscription is not None and subscription.push(frame):
            return

        buffer = self._preroll.get(speaker_id)
        if buffer is None:
            buffer = deque(maxlen=self.preroll_frames)
            self._preroll[speaker_id] = buffer
        buffer.append((time.monotonic(), frame))

        self.signal_activity(speaker_id)

    def subscribe(self, speaker_id: int, silence_ms: int) -> AudioSubscription:
        previous = self._subscriptions.get(speaker_id)
        if previous is not None:
            previous.close("replaced")

        subscription = AudioSubscription(speaker_id, silence_ms, on_close=self._unregister)
        self._subscriptions[speaker_id] = subscription

        for frame in self._recent_preroll(speaker_id, silence_ms / 1000):
            subscription.push(frame)
        return subscription

    def _recent_preroll(self, speaker_id: int, window: float) -> list[bytes]:
        buffer = self._preroll.pop(speaker_id, None)
        if not buffer:
            return []

        kept = []
        edge = time.monotonic()
        for stamp, frame in reversed(buffer):
            if edge - stamp > window:
                break
            kept.append(frame)
            edge = stamp

        if len(kept) < len(buffer):
            logger.debug(
                f"Dropped {len(buffer) - len(kept)} stale pre-roll frame(s) for speaker {speaker_id}"
            )
        kept.reverse()
        return kept

    def _unregister(self, subscription: AudioSubscription) -> None:
        if self._subscriptions.get(subscription.speaker_id) is subscription:
            del self._subscriptions[subscription.speaker_id]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for subscription in list(self._subscriptions.values()):
            subscription.close("source closed")
        self._subscriptions.clear()
        self._preroll.clear()
        logger.debug("SpeechReceiveSink closed")

    def get_live_speakers(self) -> list[int]:
        return sorted(self._subscriptions)

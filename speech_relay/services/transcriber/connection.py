from collections.abc import Callable
from typing import TYPE_CHECKING

from speech_relay.services.audio.decoder import create_frame_decoder
from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.formatter import TranscriptFormatter
from speech_relay.services.transcriber.lock import SpeakingLockSet
from speech_relay.services.transcriber.scheduler import SpeakerScheduler
from speech_relay.utils import get_current_timestamp_utc

if TYPE_CHECKING:
    from speech_relay.services.audio.source import AudioSource
    from speech_relay.services.discord_receiver.resolver import SpeakerResolver
    from speech_relay.services.ffmpeg_manager.manager import FFmpegTranscodeStream
    from speech_relay.services.manager import BaseAsyncLoggingService
    from speech_relay.services.recognizer_manager.manager import RecognizerSessionRegistry
    from speech_relay.services.relay_manager.manager import MessageRelay

# -------------------------------------------------------------- #
# Transcription Connection
# -------------------------------------------------------------- #


class TranscriptionConnection:
    """
    Transcription state for one voice connection.

    This class owns, for the lifetime of the connection:
    - The speaking lock set
    - The recognizer session registry
    - The speaker scheduler and every in-flight utterance pipeline

    ``disconnect`` cancels in-flight utterances (nothing is relayed for them),
    kills their transcoders, destroys every recognizer and clears the lock set.
    """

    def __init__(
        self,
        connection_id: int,
        audio_source: "AudioSource",
        registry: "RecognizerSessionRegistry",
        resolver: "SpeakerResolver",
        relay: "MessageRelay",
        transcoder_factory: Callable[[], "FFmpegTranscodeStream"],
        logging_service: "BaseAsyncLoggingService",
        formatter: TranscriptFormatter | None = None,
        silence_ms: int = TranscriptionConstants.SILENCE_DURATION_MS,
    ):
        self.connection_id = connection_id
        self.audio_source = audio_source
        self.registry = registry
        self.logging_service = logging_service
        self.lock_set = SpeakingLockSet()
        self.started_at = get_current_timestamp_utc()
        self._closed = False

        self.scheduler = SpeakerScheduler(
            lock_set=self.lock_set,
            registry=registry,
            audio_source=audio_source,
            resolver=resolver,
            relay=relay,
            transcoder_factory=transcoder_factory,
            frame_decoder_factory=lambda: create_frame_decoder(audio_source.frame_codec),
            logging_service=logging_service,
            formatter=formatter,
            silence_ms=silence_ms,
        )
        audio_source.set_activity_callback(self.scheduler.signal_activity)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def disconnect(self) -> None:
        """Tear down everything this connection owns. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        self.audio_source.set_activity_callback(None)

        # Cancel before closing the source so interrupted utterances are not finalized
        cancelled = await self.scheduler.cancel_all()
        self.audio_source.close()
        destroyed = self.registry.destroy_all()
        self.lock_set.clear()

        await self.logging_service.info(
            f"Connection {self.connection_id} closed: cancelled {cancelled} task(s), "
            f"released {destroyed} recognizer(s)"
        )

    def get_status(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "closed": self._closed,
            "started_at": self.started_at.isoformat(),
            "speaking": sorted(self.lock_set.snapshot()),
            "recognizers": len(self.registry),
            "active_pipelines": len(self.scheduler.get_active_pipelines()),
            "pipelines_started": self.scheduler.pipelines_started,
        }

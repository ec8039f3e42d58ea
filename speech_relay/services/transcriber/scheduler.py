import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.errors import SpeakerResolutionError
from speech_relay.services.transcriber.formatter import TranscriptFormatter
from speech_relay.services.transcriber.lock import SpeakingLockSet
from speech_relay.services.transcriber.pipeline import UtterancePipeline

if TYPE_CHECKING:
    from speech_relay.services.audio.decoder import FrameDecoder
    from speech_relay.services.audio.source import AudioSource
    from speech_relay.services.discord_receiver.resolver import SpeakerResolver
    from speech_relay.services.ffmpeg_manager.manager import FFmpegTranscodeStream
    from speech_relay.services.manager import BaseAsyncLoggingService
    from speech_relay.services.recognizer_manager.manager import RecognizerSessionRegistry
    from speech_relay.services.relay_manager.manager import MessageRelay

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Speaker Scheduler
# -------------------------------------------------------------- #


class SpeakerScheduler:
    """
    Turns speech-activity signals into utterance pipelines.

    A speaker gets a pipeline only if they are human, resolvable, and do not
    already hold a slot in the speaking lock set. The pipeline gives the slot
    back when it finishes, whichever way it finishes.
    """

    def __init__(
        self,
        lock_set: SpeakingLockSet,
        registry: "RecognizerSessionRegistry",
        audio_source: "AudioSource",
        resolver: "SpeakerResolver",
        relay: "MessageRelay",
        transcoder_factory: Callable[[], "FFmpegTranscodeStream"],
        frame_decoder_factory: Callable[[], "FrameDecoder"],
        logging_service: "BaseAsyncLoggingService",
        formatter: TranscriptFormatter | None = None,
        silence_ms: int = TranscriptionConstants.SILENCE_DURATION_MS,
    ):
        self.lock_set = lock_set
        self.registry = registry
        self.audio_source = audio_source
        self.resolver = resolver
        self.relay = relay
        self.logging_service = logging_service
        self.formatter = formatter or TranscriptFormatter()
        self.silence_ms = silence_ms

        self._transcoder_factory = transcoder_factory
        self._frame_decoder_factory = frame_decoder_factory

        self._ignored_speakers: set[int] = set()
        self._pipelines: dict[int, UtterancePipeline] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.pipelines_started = 0

    # -------------------------------------------------------------- #
    # Activity Handling
    # -------------------------------------------------------------- #

    def signal_activity(self, speaker_id: int) -> None:
        """Fire-and-forget entry point for audio sources running on the event loop."""
        if self._closed or speaker_id in self._ignored_speakers:
            return
        if self.lock_set.is_locked(speaker_id):
            return
        self._track(asyncio.create_task(self.on_activity_start(speaker_id)))

    async def on_activity_start(self, speaker_id: int) -> UtterancePipeline | None:
        """
        Start an utterance pipeline for a speaker who began transmitting.

        Returns:
            The started pipeline, or None if the event was ignored or dropped
        """
        if self._closed or speaker_id in self._ignored_speakers:
            return None

        # Atomic test-and-set: a second concurrent event for this speaker stops here
        if not self.lock_set.try_acquire(speaker_id):
            return None

        started = False
        try:
            try:
                speaker = await self.resolver.resolve(speaker_id)
            except SpeakerResolutionError as e:
                await self.logging_service.warning(f"Dropping activity for speaker: {e}")
                return None

            if speaker.is_bot:
                self._ignored_speakers.add(speaker_id)
                await self.logging_service.debug(
                    f"Ignoring bot {speaker.display_name} ({speaker_id})"
                )
                return None

            if self._closed:
                return None

            recognizer = self.registry.get_or_create(speaker_id)
            pipeline = UtterancePipeline(
                speaker=speaker,
                subscription=self.audio_source.subscribe(speaker_id, self.silence_ms),
                frame_decoder_factory=self._frame_decoder_factory,
                transcoder_factory=self._transcoder_factory,
                recognizer=recognizer,
                relay=self.relay,
                logging_service=self.logging_service,
                formatter=self.formatter,
                on_finalized=self._on_pipeline_finalized,
            )
            self._pipelines[speaker_id] = pipeline
            self._track(asyncio.create_task(pipeline.run(), name=pipeline.label))
            self.pipelines_started += 1
            started = True

            await self.logging_service.info(f"Started {pipeline.label}")
            return pipeline
        finally:
            if not started:
                self.lock_set.release(speaker_id)

    def _on_pipeline_finalized(self, speaker_id: int) -> None:
        self._pipelines.pop(speaker_id, None)
        self.lock_set.release(speaker_id)

    # -------------------------------------------------------------- #
    # Task Tracking
    # -------------------------------------------------------------- #

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Transcription task {task.get_name()} failed: {exc!r}")

    def get_active_pipelines(self) -> dict[int, UtterancePipeline]:
        return dict(self._pipelines)

    async def wait_idle(self) -> None:
        """Wait until every pending activity and pipeline task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> int:
        """Stop accepting activity and cancel every in-flight task. Returns how many."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # Pipelines whose task was cancelled before it ever ran
        for speaker_id, pipeline in self._pipelines.items():
            pipeline.close()
            self.lock_set.release(speaker_id)
        self._pipelines.clear()
        return len(tasks)

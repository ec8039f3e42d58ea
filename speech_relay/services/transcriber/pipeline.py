"""
Utterance pipeline.

One pipeline handles one speaker's one utterance:

    frames -> FrameDecoder -> ffmpeg stdin ... ffmpeg stdout -> Recognizer -> segments

States move IDLE -> STREAMING -> DRAINING -> FINALIZED. Frame writing and
output recognition run as two concurrent chains; finalization waits for the
transcoder's stdout to reach EOF, not just for its stdin to close.
"""

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from typing import TYPE_CHECKING, Any

from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.errors import FrameDecodeError, TranscoderError
from speech_relay.services.transcriber.formatter import TranscriptFormatter
from speech_relay.services.transcriber.models import (
    Speaker,
    TranscriptMessage,
    UtteranceState,
)
from speech_relay.utils import generate_16_char_uuid, get_current_timestamp_utc

if TYPE_CHECKING:
    from speech_relay.services.audio.decoder import FrameDecoder
    from speech_relay.services.audio.subscription import AudioSubscription
    from speech_relay.services.ffmpeg_manager.manager import FFmpegTranscodeStream
    from speech_relay.services.manager import BaseAsyncLoggingService
    from speech_relay.services.recognizer_manager.manager import Recognizer
    from speech_relay.services.relay_manager.manager import MessageRelay


class UtterancePipeline:
    """Decode -> transcode -> recognize -> accumulate -> relay, for one utterance."""

    def __init__(
        self,
        speaker: Speaker,
        subscription: "AudioSubscription",
        frame_decoder_factory: Callable[[], "FrameDecoder"],
        transcoder_factory: Callable[[], "FFmpegTranscodeStream"],
        recognizer: "Recognizer",
        relay: "MessageRelay",
        logging_service: "BaseAsyncLoggingService",
        formatter: TranscriptFormatter | None = None,
        on_finalized: Callable[[int], None] | None = None,
    ):
        self.utterance_id = generate_16_char_uuid()
        self.speaker = speaker
        self.subscription = subscription
        self.recognizer = recognizer
        self.relay = relay
        self.logging_service = logging_service
        self.formatter = formatter or TranscriptFormatter()

        self._frame_decoder_factory = frame_decoder_factory
        self._transcoder_factory = transcoder_factory
        self._on_finalized = on_finalized

        self.state = UtteranceState.IDLE
        self.started_at = get_current_timestamp_utc()
        self.message: TranscriptMessage | None = None

        self._segments: list[str] = []
        self._carry = b""
        self._frames_skipped = 0

        # Single worker: recognizer calls stay ordered even if a caller is cancelled mid-call
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"recognizer-{speaker.id}"
        )

    # -------------------------------------------------------------- #
    # Accessors
    # -------------------------------------------------------------- #

    @property
    def segments(self) -> list[str]:
        return list(self._segments)

    @property
    def label(self) -> str:
        return f"utterance {self.utterance_id} ({self.speaker.display_name}/{self.speaker.id})"

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def run(self) -> TranscriptMessage | None:
        """
        Run the utterance to completion.

        Returns:
            The message handed to the relay, or None if nothing was said.
            Cancellation discards the utterance without relaying anything.
        """
        try:
            try:
                await self._transcribe()
            except (TranscoderError, FrameDecodeError) as e:
                await self.logging_service.warning(
                    f"{self.label} ended early, finalizing with partial text: {e}"
                )

            self.message = await self._finalize()
            return self.message
        finally:
            self.close()
            if self._on_finalized:
                self._on_finalized(self.speaker.id)

    def close(self) -> None:
        """Release the subscription and the recognizer worker. Safe to call twice."""
        self.state = UtteranceState.FINALIZED
        self.subscription.close()
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _transcribe(self) -> None:
        decoder = self._frame_decoder_factory()
        try:
            async with self._transcoder_factory() as stream:
                self.state = UtteranceState.STREAMING
                await self.logging_service.debug(f"{self.label} streaming")

                reader = asyncio.create_task(self._recognize_output(stream))
                reader.add_done_callback(self._on_reader_done)
                try:
                    async for frame in self.subscription:
                        if reader.done():
                            # Output side ended early; awaiting the reader reports why
                            break
                        pcm = self._decode(decoder, frame)
                        if pcm:
                            await stream.write(pcm)

                    self.state = UtteranceState.DRAINING
                    await self.logging_service.debug(
                        f"{self.label} draining ({self.subscription.end_reason or 'reader done'})"
                    )
                    await stream.close_input()
                    await reader
                finally:
                    await self._stop_reader(reader)

                await self.logging_service.debug(f"{self.label} transcoder {stream.get_status()}")
        finally:
            decoder.close()

    def _on_reader_done(self, reader: asyncio.Task) -> None:
        # Output ended before input did (transcoder died): stop waiting for frames
        self.subscription.close("transcoder ended")

    async def _stop_reader(self, reader: asyncio.Task) -> None:
        if not reader.done():
            reader.cancel()
        with suppress(asyncio.CancelledError, TranscoderError):
            await reader

    # -------------------------------------------------------------- #
    # Streaming
    # -------------------------------------------------------------- #

    def _decode(self, decoder: "FrameDecoder", frame: bytes) -> bytes:
        try:
            return decoder.decode(frame)
        except FrameDecodeError:
            self._frames_skipped += 1
            return b""

    def _align(self, chunk: bytes) -> bytes:
        """Trim to whole 16-bit samples, carrying a dangling byte into the next chunk."""
        data = self._carry + chunk
        usable = len(data) - len(data) % TranscriptionConstants.BYTES_PER_SAMPLE
        self._carry = data[usable:]
        return data[:usable]

    async def _recognize_output(self, stream: "FFmpegTranscodeStream") -> None:
        async for chunk in stream.iter_output():
            pcm = self._align(chunk)
            if not pcm:
                continue

            if await self._accept_waveform(pcm):
                text = await self._final_text()
                segment = self.formatter.format_segment(text)
                if segment:
                    self._segments.append(segment)
                    await self.logging_service.debug(
                        f"{self.label} segment #{len(self._segments)}: {segment}"
                    )
                await self._reset_recognizer()

    # -------------------------------------------------------------- #
    # Finalization
    # -------------------------------------------------------------- #

    async def _finalize(self) -> TranscriptMessage | None:
        remainder = await self._final_text()
        await self._reset_recognizer()

        if self._frames_skipped:
            await self.logging_service.warning(
                f"{self.label} skipped {self._frames_skipped} undecodable frame(s)"
            )

        content = self.formatter.compose(self._segments, remainder)
        if not content:
            await self.logging_service.debug(f"{self.label} produced no text")
            return None

        message = TranscriptMessage(
            display_name=self.speaker.display_name,
            content=content,
            avatar_url=self.speaker.avatar_url,
        )
        try:
            await self.relay.send(message)
        except Exception as e:
            await self.logging_service.error(f"{self.label} relay failed (not retried): {e}")
        else:
            await self.logging_service.info(f"{self.label} relayed {len(content)} chars")
        return message

    # -------------------------------------------------------------- #
    # Recognizer Calls
    # -------------------------------------------------------------- #

    async def _call_recognizer(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def _accept_waveform(self, pcm: bytes) -> bool:
        try:
            return bool(await self._call_recognizer(self.recognizer.accept_waveform, pcm))
        except Exception as e:
            await self.logging_service.error(f"{self.label} recognizer rejected audio: {e}")
            return False

    async def _final_text(self) -> str:
        try:
            result = await self._call_recognizer(self.recognizer.final_result)
        except Exception as e:
            await self.logging_service.error(f"{self.label} recognizer result failed: {e}")
            return ""
        return result.text or ""

    async def _reset_recognizer(self) -> None:
        try:
            await self._call_recognizer(self.recognizer.reset)
        except Exception as e:
            await self.logging_service.error(f"{self.label} recognizer reset failed: {e}")

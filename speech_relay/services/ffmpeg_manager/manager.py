import asyncio
import subprocess
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from speech_relay.context import Context

from speech_relay.services.manager import BaseFFmpegServiceManager
from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.errors import TranscoderError

# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegHandler:
    def __init__(self, ffmpeg_service_manager: BaseFFmpegServiceManager | None, ffmpeg_path: str):
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.ffmpeg_path = ffmpeg_path

    # -------------------------------------------------------------- #
    # FFmpeg Management Methods
    # -------------------------------------------------------------- #

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        [self.ffmpeg_path, "-version"],
                        capture_output=True,
                        timeout=5,
                        text=True,
                    ),
                ),
                timeout=6.0,  # Slightly longer than subprocess timeout
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False

    def build_transcode_command(
        self,
        sample_rate: int,
        buffer_size: int = TranscriptionConstants.TRANSCODER_BUFFER_SIZE,
    ) -> list[str]:
        """
        Build the command that resamples Discord PCM for the recognizer.

        Format options MUST come BEFORE -i for raw input.

        Args:
            sample_rate: Output sample rate expected by the recognizer
            buffer_size: Rate-control buffer size handed to ffmpeg

        Returns:
            Argument list for the transcoder process
        """
        return [
            self.ffmpeg_path,
            "-loglevel",
            "quiet",
            "-ar",
            str(TranscriptionConstants.DISCORD_SAMPLE_RATE),  # Input: 48kHz
            "-ac",
            str(TranscriptionConstants.DISCORD_CHANNELS),  # Input: stereo
            "-f",
            TranscriptionConstants.DISCORD_PCM_FORMAT,  # Input: signed 16-bit LE
            "-i",
            "pipe:",
            "-ar",
            str(sample_rate),  # Output: recognizer rate
            "-ac",
            str(TranscriptionConstants.RECOGNIZER_CHANNELS),  # Output: mono
            "-f",
            TranscriptionConstants.DISCORD_PCM_FORMAT,  # Output: signed 16-bit LE
            "-bufsize",
            str(buffer_size),
            "-",
        ]


class FFmpegTranscodeStream:
    """
    One transcoder subprocess piping PCM from stdin to stdout.

    Use it as an async context manager: the process is spawned on entry and
    is always killed and reaped on exit, including on errors and cancellation.
    Output arrives in chunks of at most ``buffer_size`` bytes that are not
    aligned to sample boundaries.
    """

    def __init__(
        self,
        cmd: list[str],
        buffer_size: int = TranscriptionConstants.TRANSCODER_BUFFER_SIZE,
        exit_timeout: float = TranscriptionConstants.TRANSCODER_EXIT_TIMEOUT_SECONDS,
        on_finished: Callable[["FFmpegTranscodeStream"], None] | None = None,
    ):
        self.cmd = cmd
        self.buffer_size = buffer_size
        self.exit_timeout = exit_timeout
        self._on_finished = on_finished

        self.subprocess: asyncio.subprocess.Process | None = None
        self._is_running = False
        self._input_closed = False
        self._terminated = False
        self._bytes_in = 0
        self._bytes_out = 0

    async def __aenter__(self) -> "FFmpegTranscodeStream":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.terminate()

    # -------------------------------------------------------------- #
    # Streaming Methods
    # -------------------------------------------------------------- #

    async def open(self) -> "FFmpegTranscodeStream":
        """Spawn the transcoder process."""
        try:
            self.subprocess = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=self.buffer_size,  # bounds unread stdout held in memory
            )
        except (OSError, ValueError) as e:
            self._finish()
            raise TranscoderError(f"Failed to spawn transcoder '{self.cmd[0]}': {e}") from e

        self._is_running = True
        return self

    async def write(self, data: bytes) -> None:
        """
        Push PCM to the transcoder input, waiting for the pipe to drain.

        Raises:
            TranscoderError: If the input is closed or the pipe broke
        """
        if not self._is_running or self._input_closed or self.subprocess.stdin is None:
            raise TranscoderError("Transcoder input is not open")

        try:
            self.subprocess.stdin.write(data)
            await self.subprocess.stdin.drain()
        except ConnectionError as e:
            self._is_running = False
            raise TranscoderError(f"Transcoder input pipe broke: {e}") from e

        self._bytes_in += len(data)

    async def close_input(self) -> None:
        """Signal end of input; ffmpeg flushes and then closes its stdout."""
        if self._input_closed or self.subprocess is None:
            return
        self._input_closed = True

        stdin = self.subprocess.stdin
        if stdin is None:
            return
        try:
            stdin.close()
            await stdin.wait_closed()
        except ConnectionError as e:
            self._is_running = False
            raise TranscoderError(f"Transcoder input pipe broke while closing: {e}") from e

    async def iter_output(self) -> AsyncIterator[bytes]:
        """
        Yield transcoded PCM until the process closes its stdout.

        Raises:
            TranscoderError: If the process exits with a non-zero code
        """
        if self.subprocess is None or self.subprocess.stdout is None:
            raise TranscoderError("Transcoder is not running")

        stdout = self.subprocess.stdout
        while True:
            chunk = await stdout.read(self.buffer_size)
            if not chunk:
                break
            self._bytes_out += len(chunk)
            yield chunk

        returncode = await self.wait()
        if returncode != 0:
            raise TranscoderError(f"Transcoder exited with code {returncode}")

    async def wait(self) -> int:
        """Wait for the process to exit, killing it if it hangs."""
        try:
            return await asyncio.wait_for(self.subprocess.wait(), timeout=self.exit_timeout)
        except asyncio.TimeoutError:
            await self.terminate()
            raise TranscoderError(
                f"Transcoder did not exit within {self.exit_timeout}s and was killed"
            ) from None
        finally:
            self._is_running = self.subprocess.returncode is None

    async def terminate(self) -> None:
        """Kill the process if it is still alive and reap it. Safe to call twice."""
        if self._terminated:
            return
        self._terminated = True

        proc = self.subprocess
        if proc is not None:
            if proc.stdin is not None and not proc.stdin.is_closing():
                proc.stdin.close()
            if proc.returncode is None:
                with suppress(ProcessLookupError):
                    proc.kill()
            await proc.wait()

        self._finish()

    def _finish(self) -> None:
        self._is_running = False
        if self._on_finished:
            callback, self._on_finished = self._on_finished, None
            callback(self)

    def get_status(self) -> dict:
        """
        Get the current status of the transcoder process.

        Returns:
            Dictionary with running state, pid, return code and byte counters
        """
        if self.subprocess is None:
            return {
                "running": False,
                "pid": None,
                "returncode": None,
                "bytes_in": self._bytes_in,
                "bytes_out": self._bytes_out,
            }

        returncode = self.subprocess.returncode
        return {
            "running": self._is_running and returncode is None,
            "pid": self.subprocess.pid,
            "returncode": returncode,
            "bytes_in": self._bytes_in,
            "bytes_out": self._bytes_out,
        }


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Service that spawns and supervises the per-utterance transcoders."""

    def __init__(
        self,
        context: "Context",
        ffmpeg_path: str = "ffmpeg",
        buffer_size: int = TranscriptionConstants.TRANSCODER_BUFFER_SIZE,
    ):
        super().__init__(context)

        self.ffmpeg_path = ffmpeg_path
        self.buffer_size = buffer_size
        self.handler = FFmpegHandler(self, ffmpeg_path)

        self._streams: set[FFmpegTranscodeStream] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        if await self.handler.validate_ffmpeg():
            await self.services.logging_service.info(
                f"FFmpeg validated at path: {self.ffmpeg_path}"
            )
        else:
            await self.services.logging_service.warning(
                f"FFmpeg validation failed at path: {self.ffmpeg_path}"
            )

        await self.services.logging_service.info("FFmpegManagerService initialized")
        return True

    async def on_close(self):
        live = list(self._streams)
        for stream in live:
            await stream.terminate()

        if live and self.services:
            await self.services.logging_service.info(
                f"FFmpegManagerService killed {len(live)} leftover transcoder(s)"
            )
        return True

    # -------------------------------------------------------------- #
    # FFmpeg Management Methods
    # -------------------------------------------------------------- #

    def get_ffmpeg_path(self) -> str:
        """Get the FFmpeg executable path."""
        return self.ffmpeg_path

    def create_transcode_stream(self, sample_rate: int) -> FFmpegTranscodeStream:
        """Create an unopened transcoder for one utterance."""
        stream = FFmpegTranscodeStream(
            self.handler.build_transcode_command(sample_rate, self.buffer_size),
            buffer_size=self.buffer_size,
            on_finished=self._streams.discard,
        )
        self._streams.add(stream)
        return stream

    def get_active_stream_count(self) -> int:
        return len(self._streams)

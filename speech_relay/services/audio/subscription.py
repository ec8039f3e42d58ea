import asyncio
import time
from collections.abc import Callable

# -------------------------------------------------------------- #
# Audio Subscription
# -------------------------------------------------------------- #

_END_OF_STREAM = object()


class AudioSubscription:
    """
    Per-speaker frame stream with an after-silence end policy.

    Frames are pushed by the audio source and consumed with ``async for``.
    Iteration stops once ``silence_ms`` pass since the last frame was pushed,
    however late the consumer reads it, or after ``close()`` once the frames
    queued before it have been delivered.
    """

    def __init__(
        self,
        speaker_id: int,
        silence_ms: int,
        on_close: Callable[["AudioSubscription"], None] | None = None,
    ):
        if silence_ms <= 0:
            raise ValueError("silence_ms must be positive")

        self.speaker_id = speaker_id
        self.silence_ms = silence_ms
        self.end_reason: str | None = None
        self.frames_received = 0

        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._exhausted = False
        self._last_push = time.monotonic()

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: bytes) -> bool:
        """Queue a frame. Returns False once the subscription has ended."""
        if self._closed:
            return False
        self.frames_received += 1
        self._last_push = time.monotonic()
        self._queue.put_nowait(frame)
        return True

    def close(self, reason: str = "closed") -> None:
        """End the stream from the source side (e.g. the speaker disconnected)."""
        if self._closed:
            return
        self._mark_closed(reason)
        self._queue.put_nowait(_END_OF_STREAM)

    def _mark_closed(self, reason: str) -> None:
        self._closed = True
        self.end_reason = reason
        if self._on_close:
            self._on_close(self)

    def __aiter__(self) -> "AudioSubscription":
        return self

    async def __anext__(self) -> bytes:
        if self._exhausted:
            raise StopAsyncIteration

        frame = await self._next_frame()
        if frame is None:
            self._exhausted = True
            if not self._closed:
                self._mark_closed("silence")
            raise StopAsyncIteration

        if frame is _END_OF_STREAM:
            self._exhausted = True
            raise StopAsyncIteration
        return frame

    async def _next_frame(self):
        """Next queued item, or None once the silence window since the last push has passed."""
        while self._queue.empty():
            remaining = self._last_push + self.silence_ms / 1000 - time.monotonic()
            if remaining <= 0:
                return None
            try:
                return await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                # a push may have landed right at the deadline; re-check
                continue
        return self._queue.get_nowait()

from abc import ABC, abstractmethod
from collections.abc import Callable

from speech_relay.services.audio.decoder import PCM_CODEC
from speech_relay.services.audio.subscription import AudioSubscription

# -------------------------------------------------------------- #
# Audio Source Interface
# -------------------------------------------------------------- #


class AudioSource(ABC):
    """
    Hands out per-speaker audio subscriptions for a voice connection.

    Implementations call ``signal_activity`` when a speaker starts transmitting
    and has no live subscription.
    """

    # Codec of the frames pushed into subscriptions ("opus" or "pcm")
    frame_codec: str = PCM_CODEC

    _activity_callback: Callable[[int], None] | None = None

    def set_activity_callback(self, callback: Callable[[int], None] | None) -> None:
        self._activity_callback = callback

    def signal_activity(self, speaker_id: int) -> None:
        if self._activity_callback is not None:
            self._activity_callback(speaker_id)

    @abstractmethod
    def subscribe(self, speaker_id: int, silence_ms: int) -> AudioSubscription:
        """Subscribe to one speaker's frames, ending after ``silence_ms`` of silence."""
        pass

    @abstractmethod
    def close(self) -> None:
        """End every live subscription."""
        pass

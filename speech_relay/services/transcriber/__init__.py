"""Live per-speaker transcription: scheduler, utterance pipeline and connections."""

from speech_relay.services.transcriber.errors import (
    FrameDecodeError,
    RecognizerUnavailableError,
    SpeakerResolutionError,
    SpeechRelayError,
    TranscoderError,
)
from speech_relay.services.transcriber.models import (
    RecognitionResult,
    Speaker,
    TranscriptMessage,
    UtteranceState,
)

__all__ = [
    "FrameDecodeError",
    "RecognitionResult",
    "RecognizerUnavailableError",
    "Speaker",
    "SpeakerResolutionError",
    "SpeechRelayError",
    "TranscoderError",
    "TranscriptMessage",
    "UtteranceState",
]

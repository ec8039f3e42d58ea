# -------------------------------------------------------------- #
# Transcription Errors
# -------------------------------------------------------------- #


class SpeechRelayError(Exception):
    """Base class for every error raised by the transcription pipeline."""


class SpeakerResolutionError(SpeechRelayError):
    """The speaker could not be looked up (usually because they left the guild)."""

    def __init__(self, speaker_id: int, reason: str = ""):
        self.speaker_id = speaker_id
        self.reason = reason
        super().__init__(f"Could not resolve speaker {speaker_id}: {reason or 'unknown reason'}")


class TranscoderError(SpeechRelayError):
    """The transcoder process failed to spawn, crashed, or broke a pipe."""


class FrameDecodeError(SpeechRelayError):
    """A single compressed audio frame could not be decoded."""


class RecognizerUnavailableError(SpeechRelayError):
    """The recognizer model is not loaded, so no session can be created."""

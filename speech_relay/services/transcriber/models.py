import enum
from dataclasses import dataclass

# -------------------------------------------------------------- #
# Transcription Models
# -------------------------------------------------------------- #


class UtteranceState(enum.Enum):
    """Lifecycle of a single utterance pipeline."""

    IDLE = "idle"
    STREAMING = "streaming"
    DRAINING = "draining"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class Speaker:
    """A voice participant, looked up when their utterance starts."""

    id: int
    display_name: str
    avatar_url: str | None = None
    is_bot: bool = False


@dataclass(frozen=True)
class TranscriptMessage:
    """An attributed transcript, ready for the relay."""

    display_name: str
    content: str
    avatar_url: str | None = None


@dataclass(frozen=True)
class RecognitionResult:
    """Final text the recognizer committed to for a segment."""

    text: str = ""

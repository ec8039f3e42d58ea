from dataclasses import dataclass

from speech_relay.services.transcriber.constants import TranscriptionConstants


@dataclass(frozen=True)
class TranscriptFormatter:
    """
    Text conventions for recognized segments.

    Words are re-joined with ``word_separator`` (empty by default, which drops
    every inter-word space) and each finalized segment is closed with
    ``segment_marker``. The trailing remainder of an utterance gets no marker.

    Example:
        >>> TranscriptFormatter().compose(["a。", "b。"], "c d")
        'a。b。cd'
    """

    word_separator: str = TranscriptionConstants.WORD_SEPARATOR
    segment_marker: str = TranscriptionConstants.SEGMENT_MARKER

    def normalize(self, text: str) -> str:
        return self.word_separator.join(text.split())

    def format_segment(self, text: str) -> str:
        """Formatted segment, or an empty string when there was nothing said."""
        normalized = self.normalize(text)
        if not normalized:
            return ""
        return normalized + self.segment_marker

    def compose(self, segments: list[str], remainder: str) -> str:
        return "".join(segments) + self.normalize(remainder)

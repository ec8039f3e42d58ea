# -------------------------------------------------------------- #
# Configuration Constants
# -------------------------------------------------------------- #


class TranscriptionConstants:
    """Audio format and pipeline constants for live transcription."""

    # Discord voice receive format (48 kHz stereo signed 16-bit little-endian)
    DISCORD_SAMPLE_RATE = 48000
    DISCORD_CHANNELS = 2
    DISCORD_PCM_FORMAT = "s16le"
    BYTES_PER_SAMPLE = 2

    # Discord sends 20ms Opus frames
    FRAME_MS = 20
    FRAME_SAMPLES = DISCORD_SAMPLE_RATE * FRAME_MS // 1000  # 960 samples per channel

    # Recognizer input format (mono, rate configurable)
    RECOGNIZER_SAMPLE_RATE = 16000
    RECOGNIZER_CHANNELS = 1

    # Trailing silence after the last frame that ends an utterance
    SILENCE_DURATION_MS = 1000

    # Frames kept per speaker while their pipeline is being set up (1 second)
    PREROLL_FRAMES = 50

    # ffmpeg -bufsize and the bound on unconsumed transcoder output
    TRANSCODER_BUFFER_SIZE = 4000

    # Time given to a transcoder to exit before it is killed
    TRANSCODER_EXIT_TIMEOUT_SECONDS = 5.0

    # Transcript text formatting
    WORD_SEPARATOR = ""
    SEGMENT_MARKER = "。"

    # Relay webhook identity
    WEBHOOK_NAME = "VS2T bot Webhook"
    WEBHOOK_REASON = "webhook for Vosk Speech To Text bot to post message as if by user."

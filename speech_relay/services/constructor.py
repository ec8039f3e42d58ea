import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from speech_relay.context import Context

from speech_relay.services.logger import AsyncLoggingService
from speech_relay.services.manager import ServicesManager
from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.utils import parse_int_env

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")
load_dotenv()

# -------------------------------------------------------------- #
# Constructor for the Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    context: "Context",
    default_logging_path: str | None = None,
    log_file: str | None = None,
) -> ServicesManager:
    """Construct the services manager from environment configuration.

    Settings are read from the environment (``.env.local`` / ``.env`` are loaded
    first). Missing or invalid numeric settings fall back to their defaults.

    Args:
        context: Context instance shared by the bot and services
        default_logging_path: Directory to store log files (default: LOG_DIR or "logs")
        log_file: Specific log file name (optional, default is timestamped)
    """

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path or os.getenv("LOG_DIR", "logs"),
        log_file=log_file,
        min_level=os.getenv("LOG_LEVEL", "DEBUG").upper(),
    )

    # -------------------------------------------------------------- #
    # Engine Setup
    # -------------------------------------------------------------- #

    from speech_relay.services.ffmpeg_manager.manager import FFmpegManagerService
    from speech_relay.services.recognizer_manager.manager import RecognizerManagerService

    ffmpeg_service_manager = FFmpegManagerService(
        context=context,
        ffmpeg_path=os.getenv("FFMPEG_PATH") or "ffmpeg",
        buffer_size=parse_int_env(
            os.getenv("TRANSCODER_BUFFER_SIZE"), TranscriptionConstants.TRANSCODER_BUFFER_SIZE
        ),
    )

    recognizer_service_manager = RecognizerManagerService(
        context=context,
        model_path=os.getenv("VOSK_MODEL_PATH") or "model",
        sample_rate=parse_int_env(
            os.getenv("RECOGNIZER_SAMPLE_RATE"), TranscriptionConstants.RECOGNIZER_SAMPLE_RATE
        ),
    )

    # -------------------------------------------------------------- #
    # Relay Setup
    # -------------------------------------------------------------- #

    from speech_relay.services.relay_manager.manager import WebhookRelayManagerService

    relay_service_manager = WebhookRelayManagerService(context=context)

    # -------------------------------------------------------------- #
    # Transcriber Setup
    # -------------------------------------------------------------- #

    from speech_relay.services.transcriber.formatter import TranscriptFormatter
    from speech_relay.services.transcriber.manager import TranscriberManagerService

    formatter = TranscriptFormatter(
        word_separator=os.getenv(
            "TRANSCRIPT_WORD_SEPARATOR", TranscriptionConstants.WORD_SEPARATOR
        ),
        segment_marker=os.getenv(
            "TRANSCRIPT_SEGMENT_MARKER", TranscriptionConstants.SEGMENT_MARKER
        ),
    )
    transcriber_service_manager = TranscriberManagerService(
        context=context,
        silence_ms=parse_int_env(
            os.getenv("SILENCE_DURATION_MS"), TranscriptionConstants.SILENCE_DURATION_MS
        ),
        formatter=formatter,
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        ffmpeg_service_manager=ffmpeg_service_manager,
        recognizer_service_manager=recognizer_service_manager,
        relay_service_manager=relay_service_manager,
        transcriber_service_manager=transcriber_service_manager,
    )

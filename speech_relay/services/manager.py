from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from speech_relay.context import Context


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        recognizer_service_manager: BaseRecognizerServiceManager,
        relay_service_manager: BaseRelayServiceManager,
        transcriber_service_manager: BaseTranscriberServiceManager | None = None,
    ):
        self.context = context

        self.logging_service = logging_service

        # Pipeline engines
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.recognizer_service_manager = recognizer_service_manager

        # Outbound messages
        self.relay_service_manager = relay_service_manager

        # Per-guild transcription sessions
        self.transcriber_service_manager = transcriber_service_manager

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging
        await self.logging_service.on_start(self)

        # Engines
        await self.ffmpeg_service_manager.on_start(self)
        await self.recognizer_service_manager.on_start(self)

        # Relay
        await self.relay_service_manager.on_start(self)

        # Transcriber
        if self.transcriber_service_manager:
            await self.transcriber_service_manager.on_start(self)

    async def shutdown_all(self, timeout: float = 30.0) -> None:
        """
        Gracefully shutdown all service managers.

        This method ensures that:
        1. No new sessions are accepted
        2. Active transcription sessions are stopped and their pipelines cancelled
        3. Any surviving transcoder processes are killed
        4. Recognizer models are released
        5. All logs are flushed

        Args:
            timeout: Maximum time in seconds to wait for services to shutdown (default: 30s)
        """
        import asyncio

        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting graceful shutdown of all services...")

        # Mark context as shutting down to prevent new operations
        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("✓ Shutdown flag set - no new sessions will start")

        try:
            # Phase 1: Stop transcription sessions (cancels in-flight utterances)
            await self.logging_service.info("Phase 1: Stopping transcription sessions...")
            if self.transcriber_service_manager:
                await asyncio.wait_for(
                    self.transcriber_service_manager.on_close(), timeout=timeout * 0.5
                )
                await self.logging_service.info("✓ All transcription sessions stopped")

            # Phase 2: Kill leftover transcoder processes
            await self.logging_service.info("Phase 2: Stopping FFmpeg transcoders...")
            await asyncio.wait_for(self.ffmpeg_service_manager.on_close(), timeout=timeout * 0.2)
            await self.logging_service.info("✓ FFmpeg transcoders stopped")

            # Phase 3: Release recognizer model and webhook cache
            await self.logging_service.info("Phase 3: Releasing recognizer model and relay...")
            await self.recognizer_service_manager.on_close()
            await self.relay_service_manager.on_close()
            await self.logging_service.info("✓ Recognizer model and relay released")

            await self.logging_service.info("✓ Graceful shutdown completed successfully")
            await self.logging_service.info("=" * 60)

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"⚠️  Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(f"⚠️  Error during shutdown: {e}")
            # Give logging a moment to flush the error
            await asyncio.sleep(0.1)

        # Phase 4: Always flush and close logging (even if there were errors)
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass  # Don't wait forever for logging to flush


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.services = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for async logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Log a message."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        """Log a debug message."""
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        """Log an info message."""
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        """Log a warning message."""
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        """Log an error message."""
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        """Log a critical message."""
        pass


class BaseFFmpegServiceManager(Manager):
    """Specialized manager for FFmpeg services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_ffmpeg_path(self) -> str:
        """Get the FFmpeg executable path."""
        pass

    @abstractmethod
    def create_transcode_stream(self, sample_rate: int) -> Any:
        """
        Create a streaming PCM transcoder.

        Args:
            sample_rate: Output sample rate expected by the recognizer

        Returns:
            An unopened FFmpegTranscodeStream (async context manager)
        """
        pass


class BaseRecognizerServiceManager(Manager):
    """Specialized manager for speech recognizer engines."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_sample_rate(self) -> int:
        """Get the sample rate the recognizer expects."""
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the recognizer model has been loaded."""
        pass

    @abstractmethod
    def create_registry(self) -> Any:
        """Create a fresh per-connection recognizer session registry."""
        pass


class BaseRelayServiceManager(Manager):
    """Specialized manager for relaying transcripts to text channels."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def get_webhook(self, text_channel: Any) -> Any:
        """Get (or fetch and cache) the relay webhook for a text channel."""
        pass

    @abstractmethod
    async def send(self, text_channel: Any, message: Any) -> bool:
        """Send an attributed transcript message to a text channel."""
        pass


class BaseTranscriberServiceManager(Manager):
    """Specialized manager for live transcription sessions."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def start_session(
        self,
        discord_voice_client: Any,  # discord.VoiceClient
        text_channel: Any,  # discord.TextChannel
        guild: Any,  # discord.Guild
    ) -> Any:
        """Start transcribing a voice channel."""
        pass

    @abstractmethod
    async def stop_session(self, guild_id: int) -> bool:
        """Stop transcribing in a guild."""
        pass

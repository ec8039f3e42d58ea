"""
FFmpeg Manager Package.

This package contains the manager for streaming PCM transcoder processes.
"""

from speech_relay.services.ffmpeg_manager.manager import (
    FFmpegHandler,
    FFmpegManagerService,
    FFmpegTranscodeStream,
)

__all__ = [
    "FFmpegHandler",
    "FFmpegManagerService",
    "FFmpegTranscodeStream",
]

"""
Recognizer Manager Package.

This package contains the Vosk model manager and per-speaker recognizer sessions.
"""

from speech_relay.services.recognizer_manager.manager import (
    Recognizer,
    RecognizerManagerService,
    RecognizerSessionRegistry,
    VoskRecognizer,
)

__all__ = [
    "Recognizer",
    "RecognizerManagerService",
    "RecognizerSessionRegistry",
    "VoskRecognizer",
]

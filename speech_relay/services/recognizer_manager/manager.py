import asyncio
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

import vosk

if TYPE_CHECKING:
    from speech_relay.context import Context

from speech_relay.services.manager import BaseRecognizerServiceManager
from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.errors import RecognizerUnavailableError
from speech_relay.services.transcriber.models import RecognitionResult

# -------------------------------------------------------------- #
# Recognizer Interface
# -------------------------------------------------------------- #


class Recognizer(ABC):
    """Narrow view of a streaming speech recognizer."""

    @abstractmethod
    def accept_waveform(self, chunk: bytes) -> bool:
        """Feed mono s16le PCM. Returns True when a segment boundary was reached."""
        pass

    @abstractmethod
    def final_result(self) -> RecognitionResult:
        """Final text for the audio accepted since the last reset."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Drop internal state so the next segment starts clean."""
        pass

    def close(self) -> None:
        pass


class VoskRecognizer(Recognizer):
    """Adapter over ``vosk.KaldiRecognizer``."""

    def __init__(self, model: "vosk.Model", sample_rate: int):
        self.sample_rate = sample_rate
        self._recognizer = vosk.KaldiRecognizer(model, sample_rate)

    def accept_waveform(self, chunk: bytes) -> bool:
        return bool(self._recognizer.AcceptWaveform(chunk))

    def final_result(self) -> RecognitionResult:
        payload = json.loads(self._recognizer.FinalResult() or "{}")
        return RecognitionResult(text=payload.get("text", ""))

    def reset(self) -> None:
        self._recognizer.Reset()

    def close(self) -> None:
        self._recognizer = None


# -------------------------------------------------------------- #
# Recognizer Session Registry
# -------------------------------------------------------------- #


class RecognizerSessionRegistry:
    """
    Per-connection map of speaker -> recognizer.

    A speaker keeps the same recognizer for every utterance until
    ``destroy_all`` is called when the connection ends.
    """

    def __init__(self, factory: Callable[[], Recognizer]):
        self._factory = factory
        self._sessions: dict[int, Recognizer] = {}

    def get_or_create(self, speaker_id: int) -> Recognizer:
        recognizer = self._sessions.get(speaker_id)
        if recognizer is None:
            recognizer = self._factory()
            self._sessions[speaker_id] = recognizer
        return recognizer

    def destroy_all(self) -> int:
        """Close every recognizer. Returns how many were released."""
        sessions, self._sessions = self._sessions, {}
        for recognizer in sessions.values():
            recognizer.close()
        return len(sessions)

    def __contains__(self, speaker_id: int) -> bool:
        return speaker_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


# -------------------------------------------------------------- #
# Recognizer Manager Service
# -------------------------------------------------------------- #


class RecognizerManagerService(BaseRecognizerServiceManager):
    """Loads the Vosk model once and hands out per-connection registries."""

    def __init__(
        self,
        context: "Context",
        model_path: str,
        sample_rate: int = TranscriptionConstants.RECOGNIZER_SAMPLE_RATE,
    ):
        super().__init__(context)

        self.model_path = model_path
        self.sample_rate = sample_rate
        self._model: vosk.Model | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)

        # Vosk prints Kaldi diagnostics to stderr unless silenced
        vosk.SetLogLevel(-1)

        if not os.path.isdir(self.model_path):
            await self.services.logging_service.error(
                f"Vosk model directory not found: {self.model_path}"
            )
            return

        try:
            loop = asyncio.get_running_loop()
            self._model = await loop.run_in_executor(None, vosk.Model, self.model_path)
        except Exception as e:
            await self.services.logging_service.error(
                f"Failed to load Vosk model from {self.model_path}: {e}"
            )
            return

        await self.services.logging_service.info(
            f"RecognizerManagerService loaded Vosk model {self.model_path} "
            f"at {self.sample_rate} Hz"
        )

    async def on_close(self) -> None:
        self._model = None

    # -------------------------------------------------------------- #
    # Recognizer Methods
    # -------------------------------------------------------------- #

    def get_sample_rate(self) -> int:
        return self.sample_rate

    def is_ready(self) -> bool:
        return self._model is not None

    def create_recognizer(self) -> Recognizer:
        if self._model is None:
            raise RecognizerUnavailableError("Vosk model is not loaded")
        return VoskRecognizer(self._model, self.sample_rate)

    def create_registry(self) -> RecognizerSessionRegistry:
        if self._model is None:
            raise RecognizerUnavailableError("Vosk model is not loaded")
        return RecognizerSessionRegistry(self.create_recognizer)

from abc import ABC, abstractmethod

import discord

from speech_relay.services.transcriber.errors import FrameDecodeError

OPUS_CODEC = "opus"
PCM_CODEC = "pcm"

# -------------------------------------------------------------- #
# Frame Decoders
# -------------------------------------------------------------- #


class FrameDecoder(ABC):
    """Turns one compressed audio frame into 48kHz stereo s16le PCM."""

    @abstractmethod
    def decode(self, frame: bytes) -> bytes:
        pass

    def close(self) -> None:
        pass


class OpusFrameDecoder(FrameDecoder):
    """Decodes Discord Opus packets with py-cord's libopus binding."""

    def __init__(self):
        try:
            self._decoder = discord.opus.Decoder()
        except discord.opus.OpusNotLoaded as e:
            raise FrameDecodeError("libopus is not loaded") from e

    def decode(self, frame: bytes) -> bytes:
        try:
            return self._decoder.decode(frame, fec=False)
        except discord.opus.OpusError as e:
            raise FrameDecodeError(f"Failed to decode Opus frame ({len(frame)} bytes): {e}") from e

    def close(self) -> None:
        self._decoder = None


class PassthroughFrameDecoder(FrameDecoder):
    """For sources (like py-cord sinks) that already hand out decoded PCM."""

    def decode(self, frame: bytes) -> bytes:
        return bytes(frame)


def create_frame_decoder(codec: str) -> FrameDecoder:
    """Pick the decoder for an audio source's frame codec."""
    if codec == OPUS_CODEC:
        return OpusFrameDecoder()
    if codec == PCM_CODEC:
        return PassthroughFrameDecoder()
    raise ValueError(f"Unsupported frame codec: {codec}")

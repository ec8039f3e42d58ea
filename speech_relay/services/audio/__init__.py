"""Audio frame sources, subscriptions and decoders."""

from speech_relay.services.audio.decoder import (
    OPUS_CODEC,
    PCM_CODEC,
    FrameDecoder,
    OpusFrameDecoder,
    PassthroughFrameDecoder,
    create_frame_decoder,
)
from speech_relay.services.audio.source import AudioSource
from speech_relay.services.audio.subscription import AudioSubscription

__all__ = [
    "OPUS_CODEC",
    "PCM_CODEC",
    "AudioSource",
    "AudioSubscription",
    "FrameDecoder",
    "OpusFrameDecoder",
    "PassthroughFrameDecoder",
    "create_frame_decoder",
]

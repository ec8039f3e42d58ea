"""Discord voice receive adapters: the recording sink and guild member lookup."""

from speech_relay.services.discord_receiver.resolver import (
    GuildMemberResolver,
    SpeakerResolver,
    speaker_from_member,
)
from speech_relay.services.discord_receiver.sink import SpeechReceiveSink

__all__ = [
    "GuildMemberResolver",
    "SpeakerResolver",
    "SpeechReceiveSink",
    "speaker_from_member",
]

from abc import ABC, abstractmethod

import discord

from speech_relay.services.transcriber.errors import SpeakerResolutionError
from speech_relay.services.transcriber.models import Speaker

# -------------------------------------------------------------- #
# Speaker Resolvers
# -------------------------------------------------------------- #


class SpeakerResolver(ABC):
    """Looks up who a speaker id belongs to."""

    @abstractmethod
    async def resolve(self, speaker_id: int) -> Speaker:
        """
        Raises:
            SpeakerResolutionError: If the speaker cannot be found (e.g. they left)
        """
        pass


class GuildMemberResolver(SpeakerResolver):
    """Resolves speakers against a guild's members, cache first."""

    def __init__(self, guild: discord.Guild):
        self.guild = guild

    async def resolve(self, speaker_id: int) -> Speaker:
        member = self.guild.get_member(speaker_id)
        if member is None:
            try:
                member = await self.guild.fetch_member(speaker_id)
            except discord.NotFound as e:
                raise SpeakerResolutionError(speaker_id, "not a member of the guild") from e
            except discord.HTTPException as e:
                raise SpeakerResolutionError(speaker_id, str(e)) from e

        return speaker_from_member(member)


def speaker_from_member(member: discord.Member) -> Speaker:
    avatar = member.avatar
    return Speaker(
        id=member.id,
        display_name=member.display_name,
        avatar_url=avatar.url if avatar else None,
        is_bot=member.bot,
    )

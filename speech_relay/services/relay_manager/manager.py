import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from speech_relay.context import Context

from speech_relay.services.manager import BaseRelayServiceManager
from speech_relay.services.transcriber.constants import TranscriptionConstants
from speech_relay.services.transcriber.models import TranscriptMessage

# -------------------------------------------------------------- #
# Relay Interface
# -------------------------------------------------------------- #


class MessageRelay(ABC):
    """Delivers attributed transcript messages somewhere people can read them."""

    @abstractmethod
    async def send(self, message: TranscriptMessage) -> None:
        pass


class ChannelWebhookRelay(MessageRelay):
    """Relay bound to one text channel, posting through the relay service."""

    def __init__(self, relay_service: "WebhookRelayManagerService", text_channel: discord.TextChannel):
        self.relay_service = relay_service
        self.text_channel = text_channel

    async def send(self, message: TranscriptMessage) -> None:
        await self.relay_service.send(self.text_channel, message)


# -------------------------------------------------------------- #
# Webhook Relay Manager Service
# -------------------------------------------------------------- #


class WebhookRelayManagerService(BaseRelayServiceManager):
    """
    Posts transcripts through channel webhooks so they show the speaker's
    name and avatar.

    Webhooks are cached per text channel. On a cache miss the channel's
    existing webhooks are searched for one this bot can use (it has a token),
    and a new one is created only if none exists.
    """

    def __init__(
        self,
        context: "Context",
        webhook_name: str = TranscriptionConstants.WEBHOOK_NAME,
        webhook_reason: str = TranscriptionConstants.WEBHOOK_REASON,
    ):
        super().__init__(context)

        self.webhook_name = webhook_name
        self.webhook_reason = webhook_reason

        self._webhooks: dict[int, discord.Webhook] = {}
        self._fetch_locks: dict[int, asyncio.Lock] = {}
        self.messages_sent = 0

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("WebhookRelayManagerService initialized")

    async def on_close(self) -> None:
        self._webhooks.clear()
        self._fetch_locks.clear()

    # -------------------------------------------------------------- #
    # Webhook Methods
    # -------------------------------------------------------------- #

    async def get_webhook(self, text_channel: discord.TextChannel) -> discord.Webhook:
        """Get the cached webhook for a channel, fetching or creating it on a miss."""
        webhook = self._webhooks.get(text_channel.id)
        if webhook is not None:
            return webhook

        lock = self._fetch_locks.setdefault(text_channel.id, asyncio.Lock())
        async with lock:
            webhook = self._webhooks.get(text_channel.id)
            if webhook is None:
                webhook = await self._fetch_webhook(text_channel)
                self._webhooks[text_channel.id] = webhook
        return webhook

    async def _fetch_webhook(self, text_channel: discord.TextChannel) -> discord.Webhook:
        webhooks = await text_channel.webhooks()
        for webhook in webhooks:
            if webhook.token:
                await self.services.logging_service.debug(
                    f"Reusing webhook {webhook.id} in channel {text_channel.id}"
                )
                return webhook

        webhook = await text_channel.create_webhook(
            name=self.webhook_name, reason=self.webhook_reason
        )
        await self.services.logging_service.info(
            f"Created webhook {webhook.id} in channel {text_channel.id}"
        )
        return webhook

    def forget_webhook(self, channel_id: int) -> None:
        self._webhooks.pop(channel_id, None)

    async def send(self, text_channel: discord.TextChannel, message: TranscriptMessage) -> bool:
        """
        Post a transcript as the speaker. Failures are logged, never retried.

        Returns:
            True if the message was delivered
        """
        try:
            webhook = await self.get_webhook(text_channel)
            await webhook.send(
                content=message.content,
                username=message.display_name,
                avatar_url=message.avatar_url,
                allowed_mentions=discord.AllowedMentions.none(),
            )
        except discord.NotFound as e:
            # Webhook deleted behind our back; fetch a fresh one next time
            self.forget_webhook(text_channel.id)
            await self.services.logging_service.error(
                f"Relay webhook for channel {text_channel.id} is gone: {e}"
            )
            return False
        except discord.HTTPException as e:
            await self.services.logging_service.error(
                f"Failed to relay message for {message.display_name} "
                f"to channel {text_channel.id}: {e}"
            )
            return False

        self.messages_sent += 1
        return True

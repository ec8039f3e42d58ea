"""
Relay Manager Package.

This package contains the webhook relay that posts transcripts as the speaker.
"""

from speech_relay.services.relay_manager.manager import (
    ChannelWebhookRelay,
    MessageRelay,
    WebhookRelayManagerService,
)

__all__ = [
    "ChannelWebhookRelay",
    "MessageRelay",
    "WebhookRelayManagerService",
]

"""Chat platform providers."""

from muster.providers.base import Card, CardField, ChatPlatform, IncomingMessage

__all__ = ["Card", "CardField", "ChatPlatform", "IncomingMessage"]

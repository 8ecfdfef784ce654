# core/notify.py
import logging
from typing import Optional, Protocol

import discord

from core.errors import DeliveryError

log = logging.getLogger("calbot.notify")


class NotificationSink(Protocol):
    async def send(self, text: str) -> bool:
        ...


class ChannelSink:
    """Delivers messages to one Discord text channel.

    Failures are logged and reported as ``False``; nothing is retried.
    """

    def __init__(self, bot: discord.Client, channel_id: int):
        self.bot = bot
        self.channel_id = channel_id
        self._channel: Optional[discord.abc.Messageable] = None

    async def _resolve_channel(self) -> discord.abc.Messageable:
        if self._channel is not None:
            return self._channel

        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(self.channel_id)
            except discord.HTTPException as e:
                raise DeliveryError(f"Cannot fetch channel {self.channel_id}: {e}") from e

        self._channel = channel
        return channel

    async def send(self, text: str) -> bool:
        if not self.bot.is_ready():
            log.warning("Bot is not ready, dropping message")
            return False

        try:
            channel = await self._resolve_channel()
            await channel.send(
                text[:2000],  # Discord limit
                allowed_mentions=discord.AllowedMentions(everyone=True),
            )
            return True
        except DeliveryError as e:
            log.error(f"Delivery failed: {e}")
        except discord.HTTPException as e:
            log.error(f"Delivery to channel {self.channel_id} failed: {e}")
        return False

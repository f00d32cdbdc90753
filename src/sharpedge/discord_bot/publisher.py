"""Bet event publishing to a Discord channel."""

import logging

import discord

from sharpedge.discord_bot.formatter import format_bet_event_embed
from sharpedge.ledger.events import BetEvent, NotificationSink

logger = logging.getLogger(__name__)


class DiscordPublisher(NotificationSink):
    """Posts one embed per bet event to the alerts channel.

    Delivery is fire-and-forget: Discord API failures are logged and
    dropped so notification problems never stop trading.
    """

    def __init__(self, channel: discord.abc.Messageable):
        self.channel = channel
        self.sent = 0

    async def notify(self, event: BetEvent) -> None:
        embed = format_bet_event_embed(event)
        try:
            await self.channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to post {event.kind.value} alert for {event.outcome}: {e}")
            return
        self.sent += 1
        logger.debug(f"Posted {event.kind.value} alert: {event.outcome} ({event.title})")


class BotNotificationSink(NotificationSink):
    """Forwards events to a bot's publisher once the bot is ready.

    Events emitted before the bot has connected are logged and dropped.
    """

    def __init__(self, bot):
        self.bot = bot

    async def notify(self, event: BetEvent) -> None:
        publisher = self.bot.publisher
        if publisher is None:
            logger.debug(f"Discord not ready, dropping {event.kind.value} alert for {event.outcome}")
            return
        await publisher.notify(event)

"""Discord notification delivery."""

from sharpedge.discord_bot.publisher import BotNotificationSink, DiscordPublisher

__all__ = ["BotNotificationSink", "DiscordPublisher"]

"""Discord bot lifecycle management.

Handles bot startup, shutdown and alerts channel setup. The engine
publishes through ``BotNotificationSink``; the bot has no user commands.
"""

import asyncio
import logging

import discord
from discord.ext import commands

from sharpedge.config.settings import AppConfig, get_config
from sharpedge.discord_bot.channels import ensure_alerts_channel
from sharpedge.discord_bot.publisher import DiscordPublisher

logger = logging.getLogger(__name__)


class AlertsBot(commands.Bot):
    """Publish-only Discord bot for bet notifications.

    Connects to the configured guild, ensures the alerts channel exists
    and exposes a ``DiscordPublisher`` once ready.
    """

    def __init__(self, config: AppConfig | None = None):
        """Initialize bot with minimal intents (no message content needed)."""
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix="!",  # Unused but required
            intents=intents,
            help_command=None,
        )

        self.config = config or get_config()
        self.publisher: DiscordPublisher | None = None
        self._ready = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def on_ready(self) -> None:
        """Find the guild, ensure the alerts channel and create the publisher."""
        logger.info(f"Bot connected as {self.user}")

        if not self.config.discord_guild_id:
            logger.error("DISCORD_GUILD_ID not configured")
            await self.close()
            return

        guild = self.get_guild(int(self.config.discord_guild_id))
        if not guild:
            logger.error(
                f"Guild {self.config.discord_guild_id} not found. "
                "Ensure bot is invited to the server."
            )
            await self.close()
            return

        try:
            channel = await ensure_alerts_channel(guild, self.config.alerts_channel)
        except discord.HTTPException as e:
            logger.error(f"Error during channel setup: {e}")
            await self.close()
            return

        self.publisher = DiscordPublisher(channel)
        self._ready.set()
        logger.info(f"Bot ready, publishing to #{channel.name} in {guild.name}")

    async def on_error(self, event: str, *args, **kwargs) -> None:
        """Called when an event handler raises an exception."""
        logger.exception(f"Error in event {event}")

    async def wait_ready(self, timeout: float = 30.0) -> bool:
        """Wait for bot to be ready.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if bot became ready, False if timeout
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.error(f"Bot did not become ready within {timeout}s")
            return False

    def start_background(self) -> asyncio.Task:
        """Start the gateway connection as a background task."""
        self._task = asyncio.create_task(
            self.start(self.config.discord_token.get_secret_value())
        )
        return self._task

    async def shutdown(self) -> None:
        """Close the connection and wait for the background task."""
        logger.info("Shutting down bot...")
        await self.close()

        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Bot task did not complete within timeout")
            self._task.cancel()

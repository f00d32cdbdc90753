"""Discord alerts channel setup."""

import logging

import discord

logger = logging.getLogger(__name__)


async def ensure_alerts_channel(guild: discord.Guild, name: str) -> discord.TextChannel:
    """Ensure the private alerts channel exists in the guild.

    A missing channel is created hidden from @everyone and writable by
    the bot.

    Args:
        guild: Discord guild to set up the channel in
        name: Channel name

    Returns:
        The existing or newly created TextChannel

    Raises:
        discord.HTTPException: On Discord API errors
    """
    for channel in guild.text_channels:
        if channel.name == name:
            logger.info(f"Channel #{name} already exists")
            return channel

    overwrites = {
        guild.default_role: discord.PermissionOverwrite(read_messages=False),
    }
    if guild.me:
        overwrites[guild.me] = discord.PermissionOverwrite(
            read_messages=True,
            send_messages=True,
            embed_links=True,
        )

    channel = await guild.create_text_channel(name=name, overwrites=overwrites)
    logger.info(f"Created channel #{name}")
    return channel

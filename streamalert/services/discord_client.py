"""
Discord side effects used by the stream tracker.

DiscordGateway narrows a discord.py client down to the handful of operations
the application needs and turns Discord failures into logged, falsy results:
an invalid channel or role id must only disable the feature that uses it.
"""

import logging
from typing import Optional

import discord

logger = logging.getLogger("discord")


def _snowflake(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class DiscordGateway:
    """
    Thin wrapper over a discord.py client.

    Attributes:
        client (discord.Client): Logged in Discord client
    """

    def __init__(self, client: discord.Client):
        self.client = client

    async def fetch_text_channel(self, channel_id: str) -> Optional[discord.TextChannel]:
        snowflake = _snowflake(channel_id)
        if snowflake is None:
            logger.error(f"[Discord] Invalid channel id '{channel_id}', check config")
            return None
        try:
            channel = self.client.get_channel(snowflake) or await self.client.fetch_channel(snowflake)
        except discord.HTTPException as e:
            logger.error(f"[Discord] Could not fetch channel {channel_id}: {e}")
            return None
        if not isinstance(channel, discord.TextChannel):
            logger.error(f"[Discord] Channel {channel_id} is not a text channel, check config")
            return None
        return channel

    async def send_embed(self, channel_id: str, embed: discord.Embed) -> Optional[str]:
        """
        Post an embed to a text channel.

        Returns:
            The id of the posted message, or None if it could not be sent
        """
        channel = await self.fetch_text_channel(channel_id)
        if channel is None:
            return None
        try:
            message = await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"[Discord] Could not send message to {channel_id}: {e}")
            return None
        return str(message.id)

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        """
        Delete a message. A message that no longer exists counts as deleted.

        Returns:
            bool: True if the message is gone
        """
        channel = await self.fetch_text_channel(channel_id)
        snowflake = _snowflake(message_id)
        if channel is None or snowflake is None:
            return False
        try:
            await channel.get_partial_message(snowflake).delete()
        except discord.NotFound:
            logger.debug(f"[Discord] Message {message_id} was already deleted")
        except discord.HTTPException as e:
            logger.error(f"[Discord] Could not delete message {message_id}: {e}")
            return False
        return True

    async def fetch_member(self, guild_id: str, user_id: str) -> Optional[discord.Member]:
        guild_snowflake = _snowflake(guild_id)
        user_snowflake = _snowflake(user_id)
        if guild_snowflake is None or user_snowflake is None:
            logger.error(f"[Discord] Invalid guild '{guild_id}' or user '{user_id}' id, check config")
            return None
        try:
            guild = self.client.get_guild(guild_snowflake) or await self.client.fetch_guild(guild_snowflake)
            return await guild.fetch_member(user_snowflake)
        except discord.HTTPException as e:
            logger.error(f"[Discord] Could not fetch member {user_id} of guild {guild_id}: {e}")
            return None

    async def add_role(self, guild_id: str, user_id: str, role_id: str) -> bool:
        return await self._change_role(guild_id, user_id, role_id, add=True)

    async def remove_role(self, guild_id: str, user_id: str, role_id: str) -> bool:
        return await self._change_role(guild_id, user_id, role_id, add=False)

    async def _change_role(self, guild_id: str, user_id: str, role_id: str, add: bool) -> bool:
        role_snowflake = _snowflake(role_id)
        if role_snowflake is None:
            logger.error(f"[Discord] Invalid role id '{role_id}', check config")
            return False
        member = await self.fetch_member(guild_id, user_id)
        if member is None:
            return False
        role = discord.Object(id=role_snowflake)
        try:
            if add:
                await member.add_roles(role, reason="Stream went live")
            else:
                await member.remove_roles(role, reason="Stream ended")
        except discord.HTTPException as e:
            logger.error(f"[Discord] Could not {'add' if add else 'remove'} role {role_id} for {user_id}: {e}")
            return False
        return True

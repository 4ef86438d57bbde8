from __future__ import annotations

from typing import Mapping, Optional, Protocol


class ChannelDirectory(Protocol):
    def channel_name(self, guild_id: int, channel_id: int) -> Optional[str]:
        """Return the channel's display name, or None if it is unknown."""


def placeholder_name(channel_id: int) -> str:
    return f"Channel-{str(channel_id)[:8]}"


class DiscordChannelDirectory:
    """Resolve names from the bot's gateway cache; no REST calls."""

    def __init__(self, bot) -> None:
        self.bot = bot

    def channel_name(self, guild_id: int, channel_id: int) -> Optional[str]:
        guild = self.bot.get_guild(guild_id) if hasattr(self.bot, "get_guild") else None
        ch = None
        if guild is not None and hasattr(guild, "get_channel"):
            ch = guild.get_channel(channel_id)
        if ch is None and hasattr(self.bot, "get_channel"):
            ch = self.bot.get_channel(channel_id)
        return getattr(ch, "name", None) if ch is not None else None


class StaticChannelDirectory:
    """Fixed id -> name map, for the dashboard process and tests."""

    def __init__(self, names: Optional[Mapping[int, str]] = None) -> None:
        self.names = dict(names or {})

    def channel_name(self, guild_id: int, channel_id: int) -> Optional[str]:
        return self.names.get(channel_id)

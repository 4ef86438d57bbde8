from types import SimpleNamespace

from voicestats.utils.channel_resolver import (
    DiscordChannelDirectory,
    StaticChannelDirectory,
    placeholder_name,
)


class _Guild:
    def __init__(self, channels):
        self.channels = channels

    def get_channel(self, channel_id):
        return self.channels.get(channel_id)


class _Bot:
    def __init__(self, guilds, loose=None):
        self.guilds = guilds
        self.loose = loose or {}

    def get_guild(self, guild_id):
        return self.guilds.get(guild_id)

    def get_channel(self, channel_id):
        return self.loose.get(channel_id)


def test_discord_directory_prefers_guild_cache():
    bot = _Bot(
        {1: _Guild({10: SimpleNamespace(name="Lobby")})},
        loose={20: SimpleNamespace(name="Stage")},
    )
    d = DiscordChannelDirectory(bot)
    assert d.channel_name(1, 10) == "Lobby"
    assert d.channel_name(1, 20) == "Stage"
    assert d.channel_name(2, 10) is None
    assert d.channel_name(1, 30) is None


def test_static_directory_and_placeholder():
    d = StaticChannelDirectory({10: "Lobby"})
    assert d.channel_name(1, 10) == "Lobby"
    assert d.channel_name(1, 11) is None
    assert placeholder_name(123456789012345678) == "Channel-12345678"

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from voicestats.cogs.voice_stats import VoiceStatsCog
from voicestats.models import activity
from voicestats.strings import S

GID = 123456789012345678
LOBBY = 223456789012345678
GAMES = 323456789012345678


def _channel(cid, members=()):
    return SimpleNamespace(id=cid, name=f"ch{cid}", members=list(members))


def _member(uid, name="alice", bot=False):
    return SimpleNamespace(id=uid, display_name=name, bot=bot, guild=SimpleNamespace(id=GID))


def _state(channel=None):
    return SimpleNamespace(channel=channel)


@pytest.fixture
def cog(db):
    return VoiceStatsCog(SimpleNamespace(guilds=[]), db)


def _active(db):
    with db.connect() as con:
        return activity.active_for_guild(con, GID)


def test_join_move_and_leave(cog, db):
    lobby, games = _channel(LOBBY), _channel(GAMES)
    m = _member(1)

    asyncio.run(cog.on_voice_state_update(m, _state(), _state(lobby)))
    assert [r.channel_id for r in _active(db)] == [LOBBY]

    asyncio.run(cog.on_voice_state_update(m, _state(lobby), _state(games)))
    assert [r.channel_id for r in _active(db)] == [GAMES]

    asyncio.run(cog.on_voice_state_update(m, _state(games), _state()))
    assert _active(db) == []
    with db.connect() as con:
        n = con.execute("SELECT COUNT(*) FROM user_voice_activities WHERE is_active = 0").fetchone()[0]
    assert n == 2


def test_ignores_bots_and_same_channel_updates(cog, db):
    lobby = _channel(LOBBY)
    asyncio.run(cog.on_voice_state_update(_member(1, bot=True), _state(), _state(lobby)))
    assert _active(db) == []

    m = _member(2)
    asyncio.run(cog.on_voice_state_update(m, _state(), _state(lobby)))
    asyncio.run(cog.on_voice_state_update(m, _state(lobby), _state(lobby)))
    assert len(_active(db)) == 1


def test_on_ready_closes_stale_records_and_primes_members(db):
    guild = SimpleNamespace(
        id=GID,
        voice_channels=[_channel(LOBBY, [_member(1), _member(99, "robot", bot=True)])],
    )
    cog = VoiceStatsCog(SimpleNamespace(guilds=[guild]), db)
    asyncio.run(cog.on_voice_state_update(_member(5), _state(), _state(_channel(GAMES))))

    asyncio.run(cog.on_ready())

    active = _active(db)
    assert [(r.user_id, r.channel_id) for r in active] == [(1, LOBBY)]
    with db.connect() as con:
        closed = con.execute(
            "SELECT user_id FROM user_voice_activities WHERE is_active = 0"
        ).fetchall()
    assert [r[0] for r in closed] == [5]


def test_repeated_on_ready_keeps_connected_members_open(db):
    guild = SimpleNamespace(id=GID, voice_channels=[_channel(LOBBY, [_member(1)])])
    cog = VoiceStatsCog(SimpleNamespace(guilds=[guild]), db)

    for _ in range(3):
        asyncio.run(cog.on_ready())

    with db.connect() as con:
        rows = con.execute(
            "SELECT user_id, is_active, is_session_starter FROM user_voice_activities"
        ).fetchall()
        sessions = con.execute("SELECT COUNT(*) FROM voice_sessions").fetchone()[0]
    assert [tuple(r) for r in rows] == [(1, 1, 1)]
    assert sessions == 1
    with db.connect() as con:
        assert con.execute("SELECT COUNT(*) FROM period_user_stats").fetchone()[0] == 0


def test_on_ready_closes_only_members_who_moved_or_left(db):
    lobby = _channel(LOBBY, [_member(1), _member(2, "bob")])
    games = _channel(GAMES)
    guild = SimpleNamespace(id=GID, voice_channels=[lobby, games])
    cog = VoiceStatsCog(SimpleNamespace(guilds=[guild]), db)
    asyncio.run(cog.on_ready())

    # while disconnected: bob moved to games
    lobby.members = [_member(1)]
    games.members = [_member(2, "bob")]
    asyncio.run(cog.on_ready())

    assert sorted((r.user_id, r.channel_id) for r in _active(db)) == [(1, LOBBY), (2, GAMES)]
    with db.connect() as con:
        closed = con.execute(
            "SELECT user_id, channel_id FROM user_voice_activities WHERE is_active = 0"
        ).fetchall()
    assert [tuple(r) for r in closed] == [(2, LOBBY)]


def test_summaries_are_built_once_per_day(db, monkeypatch):
    guild = SimpleNamespace(id=GID, voice_channels=[])
    cog = VoiceStatsCog(SimpleNamespace(guilds=[guild]), db)
    calls = []
    real = cog.summaries.build_closed_periods

    def counting(guild_id, now):
        calls.append((guild_id, now))
        return real(guild_id, now)

    monkeypatch.setattr(cog.summaries, "build_closed_periods", counting)
    now = datetime(2025, 1, 20, 3, 0, tzinfo=timezone.utc)

    asyncio.run(cog._summarize_guilds(now))
    asyncio.run(cog._summarize_guilds(now + timedelta(minutes=10)))
    assert len(calls) == 1
    assert cog.summaries.list_summaries(GID, "weekly").items[0].key == "2025-W03"

    asyncio.run(cog._summarize_guilds(now + timedelta(days=1)))
    assert len(calls) == 2


class _Interaction:
    def __init__(self):
        self.guild = SimpleNamespace(id=GID)
        self.sent = []
        self.followups = []
        self.response = SimpleNamespace(send_message=self._send)
        self.followup = SimpleNamespace(send=self._followup)

    async def _send(self, content, **kwargs):
        await asyncio.sleep(0)
        self.sent.append(content)

    async def _followup(self, content, **kwargs):
        self.followups.append(content)


def test_concurrent_rebuilds_of_one_guild_run_once(cog):
    first, second = _Interaction(), _Interaction()

    async def both():
        await asyncio.gather(
            cog.voice_stats_rebuild.callback(cog, first),
            cog.voice_stats_rebuild.callback(cog, second),
        )

    asyncio.run(both())

    assert first.sent == [S("voice_stats.rebuild.starting")]
    assert second.sent == [S("voice_stats.rebuild.already_running")]
    assert len(first.followups) == 1 and second.followups == []
    assert first.followups[0].startswith("Rebuild complete.")
    assert cog._rebuilds == {}

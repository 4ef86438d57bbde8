from __future__ import annotations

import asyncio
import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from .. import config
from ..db import Database
from ..errors import RollupCancelled, ValidationError
from ..models.period_stats import PeriodStatsStore
from ..ranking import RankingComputator
from ..rollup import BatchRollupScanner
from ..strings import S
from ..summaries import SummaryService
from ..timeline import TimelineReconstructor
from ..tracker import ActivityTracker
from ..utils.channel_resolver import DiscordChannelDirectory
from ..utils.time import format_duration

log = logging.getLogger(__name__)


class VoiceStatsCog(commands.Cog):
    """
    Feeds voice join/leave events into the activity ledger and exposes
    admin commands over the statistics.
    """

    def __init__(self, bot: commands.Bot, db: Optional[Database] = None):
        self.bot = bot
        self.db = db or Database()
        self.tz = config.STATS_TZ
        self.store = PeriodStatsStore(self.db)
        self.tracker = ActivityTracker(self.db, self.tz, self.store)
        self.ranking = RankingComputator(self.store, self.tz)
        self.rollup = BatchRollupScanner(self.db, self.tz, self.store)
        self.timeline = TimelineReconstructor(self.db, DiscordChannelDirectory(bot))
        self.summaries = SummaryService(self.db, self.tz)
        self._rebuilds: Dict[int, threading.Event] = {}  # guild_id -> cancel flag
        self._summarized: Dict[int, date] = {}  # guild_id -> org-tz day last summarized

    async def cog_load(self):
        self.db.ensure_schema()
        self._summary_loop.start()

    async def cog_unload(self):
        self._summary_loop.cancel()
        for ev in self._rebuilds.values():
            ev.set()

    @commands.Cog.listener()
    async def on_ready(self):
        """
        Reconcile the ledger with who is in voice right now. Fires again after
        every reconnect, so members still in the same channel keep their record.
        """
        now = datetime.now(timezone.utc)
        connected = 0
        for guild in self.bot.guilds:
            present = {
                (member.id, channel.id): member
                for channel in guild.voice_channels
                for member in channel.members
                if not member.bot
            }
            try:
                self.tracker.close_dangling(guild.id, now, keep=present.keys())
            except Exception:
                log.exception("Failed to close dangling sessions for GID %s", guild.id)
                continue
            for (user_id, channel_id), member in present.items():
                try:
                    self.tracker.record_join(
                        guild.id, user_id, member.display_name, channel_id, now
                    )
                    connected += 1
                except Exception:
                    log.exception("Failed to prime session for %s", user_id)
        log.info("Voice ledger reconciled with %d connected member(s).", connected)

    # --- Summaries ---

    async def _summarize_guilds(self, now: datetime) -> None:
        """Build each guild's finished day/week/month once per org-timezone day."""
        today = now.astimezone(self.tz).date()
        for guild in list(self.bot.guilds):
            if self._summarized.get(guild.id) == today:
                continue
            try:
                day, week, month = await asyncio.to_thread(
                    self.summaries.build_closed_periods, guild.id, now
                )
            except Exception:
                log.exception("Summary build failed for GID %s", guild.id)
                continue
            self._summarized[guild.id] = today
            log.info("Summaries built for GID %s (%s, %s, %s)", guild.id, day, week, month)

    @tasks.loop(minutes=10)
    async def _summary_loop(self):
        await self._summarize_guilds(datetime.now(timezone.utc))

    @_summary_loop.before_loop
    async def _before_summary_loop(self):
        await self.bot.wait_until_ready()

    # --- Live Listener ---

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ):
        if member.bot:
            return
        if before.channel == after.channel:
            return  # mute/deafen/stream toggles

        now = datetime.now(timezone.utc)
        guild_id = member.guild.id

        # A move is a leave from `before` followed by a join to `after`.
        if before.channel is not None:
            try:
                self.tracker.record_leave(guild_id, member.id, before.channel.id, now)
            except Exception:
                log.exception("Failed to close voice activity for %s", member.id)

        if after.channel is not None:
            try:
                self.tracker.record_join(
                    guild_id, member.id, member.display_name, after.channel.id, now
                )
            except Exception:
                log.exception("Failed to open voice activity for %s", member.id)

    # --- Commands ---

    @app_commands.command(
        name="voice_rank",
        description="Show this week's voice ranking.",
    )
    @app_commands.describe(metric="duration, sessions or started_sessions")
    async def voice_rank(self, interaction: discord.Interaction, metric: str = "duration"):
        if not interaction.guild:
            return await interaction.response.send_message(
                S("common.guild_only"), ephemeral=True
            )
        today = datetime.now(self.tz).date()
        monday = today - timedelta(days=today.weekday())
        try:
            result = self.ranking.compute_ranking(
                interaction.guild.id,
                metric,
                monday.isoformat(),
                (monday + timedelta(days=6)).isoformat(),
                limit=10,
            )
        except ValidationError as e:
            return await interaction.response.send_message(e.message, ephemeral=True)

        if not result.rankings:
            return await interaction.response.send_message(
                S("voice_stats.rank.empty"), ephemeral=True
            )
        lines = [S("voice_stats.rank.header", metric=metric, period=result.current_period)]
        for entry in result.rankings:
            value = format_duration(entry.value) if metric == "duration" else str(entry.value)
            lines.append(S("voice_stats.rank.row", rank=entry.rank, name=entry.username, value=value))
        await interaction.response.send_message(
            "\n".join(lines), allowed_mentions=discord.AllowedMentions.none()
        )

    @app_commands.command(
        name="voice_today",
        description="Summarize voice activity over the last 24 hours.",
    )
    async def voice_today(self, interaction: discord.Interaction):
        if not interaction.guild:
            return await interaction.response.send_message(
                S("common.guild_only"), ephemeral=True
            )
        end = datetime.now(timezone.utc).replace(microsecond=0)
        tl = self.timeline.build_for_window(interaction.guild.id, end - timedelta(days=1), end)
        s = tl.summary
        if not s.total_sessions:
            return await interaction.response.send_message(
                S("voice_stats.today.empty"), ephemeral=True
            )
        lines = [
            S(
                "voice_stats.today.header",
                sessions=s.total_sessions,
                members=s.total_participants,
                total=format_duration(s.total_duration),
            )
        ]
        if s.most_active_user:
            lines.append(
                S(
                    "voice_stats.today.top",
                    name=s.most_active_user.username,
                    total=format_duration(s.most_active_user.duration),
                )
            )
        channels: Dict[str, int] = {}
        for a in tl.activities:
            for sess in a.sessions:
                channels[sess.channel_name] = channels.get(sess.channel_name, 0) + sess.duration
        for name, dur in sorted(channels.items(), key=lambda kv: -kv[1])[:5]:
            lines.append(S("voice_stats.today.channel", channel=name, total=format_duration(dur)))
        await interaction.response.send_message(
            "\n".join(lines), allowed_mentions=discord.AllowedMentions.none()
        )

    @app_commands.command(
        name="voice_stats_rebuild",
        description="Recompute voice statistics from the activity ledger.",
    )
    @app_commands.checks.has_permissions(manage_guild=True)
    async def voice_stats_rebuild(self, interaction: discord.Interaction):
        if not interaction.guild:
            return await interaction.response.send_message(
                S("common.guild_only"), ephemeral=True
            )
        guild = interaction.guild
        if guild.id in self._rebuilds:
            return await interaction.response.send_message(
                S("voice_stats.rebuild.already_running"), ephemeral=True
            )
        # claim the guild before the first await
        cancel = self._rebuilds[guild.id] = threading.Event()
        try:
            await interaction.response.send_message(
                S("voice_stats.rebuild.starting"), ephemeral=True
            )
            log.info("Starting voice stats rebuild for GID %s", guild.id)
            rows = await asyncio.to_thread(
                self.rollup.rebuild_period_aggregates, guild.id, config.ROLLUP_BATCH_SIZE, cancel
            )
            users = await asyncio.to_thread(
                self.rollup.rebuild_user_totals, guild.id, config.ROLLUP_BATCH_SIZE, cancel
            )
            summaries = await asyncio.to_thread(
                self.summaries.rebuild_all, guild.id, datetime.now(timezone.utc)
            )
            await interaction.followup.send(
                S(
                    "voice_stats.rebuild.complete",
                    rows=rows,
                    users=len(users),
                    summaries=summaries,
                ),
                ephemeral=True,
            )
        except RollupCancelled as e:
            await interaction.followup.send(
                S("voice_stats.rebuild.cancelled", pages=e.pages_read), ephemeral=True
            )
        except Exception as e:
            log.exception("Voice stats rebuild failed for GID %s", guild.id)
            await interaction.followup.send(
                S("voice_stats.rebuild.error", err=str(e)), ephemeral=True
            )
        finally:
            self._rebuilds.pop(guild.id, None)


async def setup(bot: commands.Bot):
    await bot.add_cog(VoiceStatsCog(bot, getattr(bot, "db", None)))

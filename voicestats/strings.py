from __future__ import annotations
from typing import Any, Mapping


# ===============================================================
# Lookup + formatting
# ===============================================================
_STRINGS: dict[str, str] = {}


def S(key: str, /, **fmt: Any) -> str:
    """Lookup + format. Unknown keys come back as the key itself."""
    template = _STRINGS.get(key, key)
    try:
        return template.format(**fmt) if fmt else template
    except (KeyError, IndexError, ValueError):
        return template


def register(entries: Mapping[str, str]) -> None:
    _STRINGS.update(entries)


# ===============================================================
# String table
# ===============================================================

register(
    {
        # ---------------- Common ----------------
        "common.guild_only": "This command can only be used in a server.",
        # ---------------- Voice stats ----------------
        "voice_stats.rebuild.already_running": "A rebuild is already running for this server.",
        "voice_stats.rebuild.starting": "Rebuilding voice statistics from the activity ledger. This may take a while.",
        "voice_stats.rebuild.complete": "Rebuild complete. Wrote {rows} aggregate rows for {users} members and {summaries} summary rows.",
        "voice_stats.rebuild.cancelled": "Rebuild cancelled after {pages} page(s). Existing statistics were left untouched.",
        "voice_stats.rebuild.error": "An error occurred during the rebuild: {err}",
        "voice_stats.rank.header": "Voice ranking ({metric}, {period})",
        "voice_stats.rank.row": "#{rank} {name} - {value}",
        "voice_stats.rank.empty": "No voice activity recorded for this period yet.",
        "voice_stats.today.header": "Last 24h: {sessions} session(s) from {members} member(s), {total} in total.",
        "voice_stats.today.top": "Most active: {name} ({total})",
        "voice_stats.today.channel": "- {channel}: {total}",
        "voice_stats.today.empty": "Nobody has been in voice in the last 24 hours.",
    }
)

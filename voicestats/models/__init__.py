"""Typed access to the voice statistics tables."""

from . import activity
from . import common
from . import period_stats
from . import voice_sessions

__all__ = [
    "activity",
    "common",
    "period_stats",
    "voice_sessions",
]

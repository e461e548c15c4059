"""
cozycore.engine.caps — Hourly / daily XP cap buckets
=====================================================

The message path keeps two rolling counters on the ledger row: XP earned
this hour and XP earned today.  A bucket resets once the wall clock has
crossed the start of a new UTC hour (or day) since its last reset stamp.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cozycore.database.models import LevelConfig, MemberXp


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def hour_start(now: datetime) -> datetime:
    return now.replace(minute=0, second=0, microsecond=0)


def day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True, slots=True)
class CapBuckets:
    xp_this_hour: int = 0
    xp_today: int = 0
    last_hour_reset: datetime | None = None
    last_day_reset: datetime | None = None

    @classmethod
    def from_member(cls, member: MemberXp | None) -> CapBuckets:
        if member is None:
            return cls()
        return cls(
            xp_this_hour=member.xp_earned_this_hour or 0,
            xp_today=member.xp_earned_today or 0,
            last_hour_reset=as_utc(member.last_hour_reset),
            last_day_reset=as_utc(member.last_day_reset),
        )


def roll_buckets(buckets: CapBuckets, now: datetime) -> CapBuckets:
    """Zero any bucket whose window ended before *now*'s hour / day."""
    if buckets.last_hour_reset is None or buckets.last_hour_reset < hour_start(now):
        buckets = replace(buckets, xp_this_hour=0, last_hour_reset=now)
    if buckets.last_day_reset is None or buckets.last_day_reset < day_start(now):
        buckets = replace(buckets, xp_today=0, last_day_reset=now)
    return buckets


def cap_reached(buckets: CapBuckets, config: LevelConfig) -> bool:
    """True when an enabled hourly or daily cap is already met."""
    if (
        config.max_xp_per_hour_enabled
        and config.max_xp_per_hour is not None
        and buckets.xp_this_hour >= config.max_xp_per_hour
    ):
        return True
    return bool(
        config.max_xp_per_day_enabled
        and config.max_xp_per_day is not None
        and buckets.xp_today >= config.max_xp_per_day
    )


def bump(buckets: CapBuckets, amount: int) -> CapBuckets:
    return replace(
        buckets,
        xp_this_hour=buckets.xp_this_hour + amount,
        xp_today=buckets.xp_today + amount,
    )

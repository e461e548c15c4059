"""
cozycore.constants — Shared Constants
======================================

Single source of truth for presentation constants, Discord permission bits
and the embed template defaults.  Import from here instead of duplicating in
cogs, services, and dashboard routes.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Embed colours
# ---------------------------------------------------------------------------
PASTEL_COLORS: tuple[int, ...] = (
    0xFFB3BA,  # pink
    0xFFDFBA,  # peach
    0xFFFFBA,  # lemon
    0xBAFFC9,  # mint
    0xBAE1FF,  # sky
    0xE0BBE4,  # lavender
    0xD4A5A5,  # rose
    0xA5D4D4,  # teal
    0xD4D4A5,  # sand
    0xC9B1FF,  # lilac
)

BOOST_PINK = 0xF47FFF

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉

# ---------------------------------------------------------------------------
# Discord permission bits (guild-level)
# ---------------------------------------------------------------------------
PERMISSION_ADMINISTRATOR = 0x8
PERMISSION_MANAGE_GUILD = 0x20


def has_manage_guild_permission(permissions: str | int | None) -> bool:
    """Return True if a guild permission bitfield grants Manage Server."""
    if permissions in (None, ""):
        return False
    value = int(permissions)
    return bool(value & PERMISSION_MANAGE_GUILD) or bool(value & PERMISSION_ADMINISTRATOR)


# ---------------------------------------------------------------------------
# Similarity gate
# ---------------------------------------------------------------------------
SIMILARITY_THRESHOLDS: dict[str, float] = {
    "low": 0.9,
    "medium": 0.7,
    "high": 0.5,
    "strict": 0.3,
}
SIMILARITY_SEVERITIES: tuple[str, ...] = ("off", *SIMILARITY_THRESHOLDS)
DEFAULT_SIMILARITY_THRESHOLD = 0.7

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
FALLBACK_ROLE_TEMPLATE = "{user} earned {role}!"

LOG_EMBED_TITLE = "Logs Level"

SOURCE_LABELS: dict[str, str] = {
    "message": "via message",
    "thread": "via thread close",
    "helper": "via helper bonus",
    "dashboard": "via dashboard",
}

MONTH_NAMES: tuple[str, ...] = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------
THREAD_NAME_MAX_LENGTH = 100
ONBOARDING_SELECT_PREFIX = "onboarding_role_select_"
CLOSE_HELPER_SELECT_PREFIX = "close_helper_"
THREAD_RETENTION_DAYS: dict[str, int] = {"1d": 1, "7d": 7}

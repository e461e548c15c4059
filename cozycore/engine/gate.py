"""
cozycore.engine.gate — Cooldown & similarity gate for message XP
=================================================================

Suppresses farmed XP before anything touches the ledger:

* a per-member cooldown between awarded messages,
* a minimum message length,
* an optional channel whitelist,
* a Jaccard word-set similarity check against the member's last few
  messages.

State is process-local and lost on restart.  :class:`XpGate` takes an
injectable clock so tests can move time without sleeping; the bot keeps one
instance on the leveling cog.
"""

from __future__ import annotations

import logging
import math
import random
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cozycore.constants import DEFAULT_SIMILARITY_THRESHOLD, SIMILARITY_THRESHOLDS

if TYPE_CHECKING:
    from cozycore.database.models import LevelConfig

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 5


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------
def _word_set(text: str) -> set[str]:
    return set(text.lower().strip().split())


def jaccard(a: str, b: str) -> float:
    """Jaccard index of the lowercase whitespace-separated word sets."""
    words_a, words_b = _word_set(a), _word_set(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def check_similarity(content: str, history: Iterable[str], severity: str) -> bool:
    """Return True if *content* is too close to any message in *history*.

    Severity ``"off"`` never suppresses; unknown severities fall back to the
    medium threshold.
    """
    history = list(history)
    if not history or severity == "off":
        return False
    threshold = SIMILARITY_THRESHOLDS.get(severity, DEFAULT_SIMILARITY_THRESHOLD)
    return any(jaccard(content, prev) >= threshold for prev in history)


# ---------------------------------------------------------------------------
# XP roll
# ---------------------------------------------------------------------------
def roll_message_xp(
    min_xp: int, max_xp: int, rng: Callable[[], float] = random.random
) -> int:
    """Uniform integer in ``[min_xp, max_xp]`` inclusive."""
    return math.floor(rng() * (max_xp - min_xp + 1) + min_xp)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GateRules:
    """The slice of a guild's level config the gate needs."""

    cooldown_seconds: int = 60
    min_message_length: int = 5
    similarity_severity: str = "medium"
    whitelisted_channels: frozenset[str] = frozenset()

    @classmethod
    def from_config(cls, config: LevelConfig) -> GateRules:
        return cls(
            cooldown_seconds=config.cooldown_seconds,
            min_message_length=config.min_message_length,
            similarity_severity=config.similarity_severity,
            whitelisted_channels=frozenset(str(c) for c in config.whitelisted_channels or []),
        )


class XpGate:
    """Per-process cooldown map plus a bounded message history per member.

    Keys are ``"{guild_id}:{user_id}"``.  The clock returns seconds and
    defaults to :func:`time.monotonic`.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self._clock = clock
        self._history_size = history_size
        self._cooldowns: dict[str, float] = {}
        self._history: dict[str, deque[str]] = {}

    @staticmethod
    def key(guild_id: str | int, user_id: str | int) -> str:
        return f"{guild_id}:{user_id}"

    def history(self, guild_id: str | int, user_id: str | int) -> list[str]:
        return list(self._history.get(self.key(guild_id, user_id), ()))

    def on_cooldown(self, guild_id: str | int, user_id: str | int, cooldown_seconds: int) -> bool:
        last = self._cooldowns.get(self.key(guild_id, user_id))
        return last is not None and self._clock() - last < cooldown_seconds

    def should_suppress(
        self,
        guild_id: str | int,
        user_id: str | int,
        channel_id: str | int,
        content: str,
        rules: GateRules,
    ) -> bool:
        """Return True if this message must not earn XP.

        An accepted message is pushed into the member's history, evicting
        the oldest entry beyond the configured size.
        """
        reason = self._rejection_reason(guild_id, user_id, channel_id, content, rules)
        if reason is not None:
            logger.debug(
                "XP suppressed for %s in guild %s: %s", user_id, guild_id, reason,
            )
            return True

        if rules.similarity_severity != "off":
            key = self.key(guild_id, user_id)
            bucket = self._history.setdefault(key, deque(maxlen=self._history_size))
            bucket.append(content)
        return False

    def _rejection_reason(
        self,
        guild_id: str | int,
        user_id: str | int,
        channel_id: str | int,
        content: str,
        rules: GateRules,
    ) -> str | None:
        if rules.whitelisted_channels and str(channel_id) not in rules.whitelisted_channels:
            return "channel not whitelisted"
        if len(content) < rules.min_message_length:
            return "message too short"
        if self.on_cooldown(guild_id, user_id, rules.cooldown_seconds):
            return "cooldown"
        if check_similarity(
            content, self.history(guild_id, user_id), rules.similarity_severity
        ):
            return "similar to recent message"
        return None

    def mark_awarded(self, guild_id: str | int, user_id: str | int) -> None:
        """Start the cooldown window for this member."""
        self._cooldowns[self.key(guild_id, user_id)] = self._clock()

    def reset(self) -> None:
        self._cooldowns.clear()
        self._history.clear()

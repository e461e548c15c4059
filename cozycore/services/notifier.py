"""
cozycore.services.notifier — Templated, best-effort notifications
==================================================================

Owns the template rules shared by every notification:

* :func:`pick_template` — main template or a random non-blank alternate.
* :func:`render_template` — literal ``{name}`` substitution.  This is not a
  templating language: unknown placeholders are left as typed.
* :func:`random_pastel` — decorative accent colour.

Delivery goes through :func:`notify`, which schedules the send on the loop
and hands back the :class:`asyncio.Task`.  The task never raises; it
resolves to ``True`` when the embed was delivered and ``False`` when the
channel was missing, forbidden, or the send failed.  A notification is
never part of the XP / role transaction that triggered it.

Embed layout lives in :mod:`cozycore.services.embeds`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

import discord

from cozycore.constants import FALLBACK_ROLE_TEMPLATE, PASTEL_COLORS
from cozycore.services.gateway import ChannelUnavailable

if TYPE_CHECKING:
    from cozycore.services.gateway import GuildGateway

logger = logging.getLogger(__name__)

# Strong references so scheduled sends are not garbage-collected mid-flight.
_pending: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
def pick_template(
    main: str | None,
    alternates: Sequence[str] | None = None,
    rng: random.Random | None = None,
) -> str:
    """Choose uniformly among *main* and the non-blank *alternates*.

    With no usable alternates the main template is returned as-is, or the
    generic role template when the main one is empty too.
    """
    valid = [t for t in (alternates or []) if t and t.strip()]
    if not valid:
        return main or FALLBACK_ROLE_TEMPLATE
    return (rng or random).choice([main or "", *valid])


def render_template(template: str, values: Mapping[str, object]) -> str:
    for name, value in values.items():
        template = template.replace("{" + name + "}", str(value))
    return template


def random_pastel(rng: random.Random | None = None) -> int:
    return (rng or random).choice(PASTEL_COLORS)


def user_mention(user_id: str | int) -> str:
    return f"<@{user_id}>"


def role_mention(role_id: str | int | None, *, missing: str = "none") -> str:
    return f"<@&{role_id}>" if role_id else missing


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
async def deliver(
    gateway: GuildGateway, channel_id: str | None, embed: discord.Embed
) -> bool:
    """Send *embed* and report success.  Never raises."""
    if not channel_id:
        return False
    try:
        await gateway.send_embed(channel_id, embed)
        return True
    except ChannelUnavailable:
        logger.warning(
            "Notification channel %s unavailable in guild %s",
            channel_id, gateway.guild_id,
        )
    except discord.HTTPException as exc:
        logger.warning(
            "Discord rejected notification to channel %s in guild %s: %s",
            channel_id, gateway.guild_id, exc,
        )
    except Exception:
        logger.exception(
            "Failed to send notification to channel %s in guild %s",
            channel_id, gateway.guild_id,
        )
    return False


def notify(
    gateway: GuildGateway, channel_id: str | None, embed: discord.Embed
) -> asyncio.Task[bool]:
    """Schedule a best-effort send and return its task.

    Must be called from a running event loop.  Awaiting the task is
    optional; its result says whether the embed went out.
    """
    task = asyncio.get_running_loop().create_task(deliver(gateway, channel_id, embed))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task

"""
cozycore.services.embeds — Discord embed builders
==================================================

All embed construction lives here so the award engine, cogs and dashboard
routes only supply data.  Template selection and substitution come from
:mod:`cozycore.services.notifier`.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord

from cozycore.constants import BOOST_PINK, LOG_EMBED_TITLE, SOURCE_LABELS
from cozycore.engine.progression import RoleResolution, TransitionKind, sort_roles
from cozycore.services.notifier import (
    pick_template,
    random_pastel,
    render_template,
    role_mention,
    user_mention,
)

if TYPE_CHECKING:
    from cozycore.database.models import LevelConfig
    from cozycore.engine.progression import RoleStep
    from cozycore.services.gateway import MemberProfile


def _embed(
    description: str,
    *,
    title: str | None = None,
    color: int | None = None,
    rng: random.Random | None = None,
) -> discord.Embed:
    embed = discord.Embed(
        description=description,
        color=color if color is not None else random_pastel(rng),
        timestamp=datetime.now(UTC),
    )
    # Blank title → no title line.
    if title:
        embed.title = title
    return embed


def _set_author(embed: discord.Embed, member: MemberProfile | None) -> None:
    if member is not None:
        embed.set_author(name=member.display_name, icon_url=member.avatar_url)


def format_multiplier(value: float) -> str:
    return f"{value:g}x"


# ---------------------------------------------------------------------------
# XP log
# ---------------------------------------------------------------------------
def build_log_embed(
    user_id: str,
    amount: int,
    old_xp: int,
    new_xp: int,
    source: str,
    rng: random.Random | None = None,
) -> discord.Embed:
    """Log line for an automatic award (message, thread, helper)."""
    label = SOURCE_LABELS.get(source, source)
    return _embed(
        f"{user_mention(user_id)} earned **+{amount} XP** {label} ({old_xp} → {new_xp})",
        title=LOG_EMBED_TITLE,
        rng=rng,
    )


def build_adjust_log_embed(
    user_id: str,
    amount: int,
    old_xp: int,
    new_xp: int,
    *,
    admin_name: str,
    reason: str | None = None,
    resolution: RoleResolution | None = None,
    role_changed: bool = False,
    rng: random.Random | None = None,
) -> discord.Embed:
    """Log line for a dashboard adjustment, with reason, role and admin."""
    action = "added" if amount > 0 else "removed"
    lines = [
        f"{user_mention(user_id)} had **{abs(amount)} XP** {action} via dashboard "
        f"({old_xp} → {new_xp})"
    ]
    if reason:
        lines.append(f"**Reason:** {reason}")
    if role_changed and resolution is not None:
        new_role = resolution.target.role_id if resolution.target else None
        old_role = resolution.previous_role_id
        if new_role and old_role:
            lines.append(
                f"**Role changed:** {role_mention(old_role)} → {role_mention(new_role)}"
            )
        elif new_role:
            lines.append(f"**Role assigned:** {role_mention(new_role)}")
        elif old_role:
            lines.append(f"**Role removed:** {role_mention(old_role)}")
    lines.append(f"**Admin:** {admin_name}")
    return _embed("\n".join(lines), title=LOG_EMBED_TITLE, rng=rng)


# ---------------------------------------------------------------------------
# Role changes
# ---------------------------------------------------------------------------
def build_role_embed(
    config: LevelConfig,
    resolution: RoleResolution,
    user_id: str,
    member: MemberProfile | None = None,
    rng: random.Random | None = None,
) -> discord.Embed:
    """Promotion, demotion or role-loss announcement."""
    if resolution.kind is TransitionKind.PROMOTION:
        title = config.promotion_embed_title
        template = pick_template(
            config.promotion_embed_description, config.promotion_embed_descriptions, rng,
        )
    elif resolution.kind is TransitionKind.DEMOTION:
        title = config.demotion_embed_title
        template = pick_template(
            config.demotion_embed_description, config.demotion_embed_descriptions, rng,
        )
    else:
        title = config.role_loss_embed_title
        template = pick_template(
            config.role_loss_embed_description, config.role_loss_embed_descriptions, rng,
        )

    old_role = role_mention(resolution.previous_role_id)
    if resolution.target is not None:
        new_role = role_mention(resolution.target.role_id)
        role = new_role
    else:
        # Role loss: {role} names the role that was taken away.
        new_role = "none"
        role = old_role

    description = render_template(
        template,
        {
            "user": user_mention(user_id),
            "role": role,
            "newRole": new_role,
            "oldRole": old_role,
        },
    )
    embed = _embed(description, title=title, rng=rng)
    _set_author(embed, member)
    return embed


# ---------------------------------------------------------------------------
# Forum support
# ---------------------------------------------------------------------------
def build_helper_embed(
    config: LevelConfig,
    helper_id: str,
    asker_id: str,
    thread_name: str,
    xp: int,
    helper: MemberProfile | None = None,
    rng: random.Random | None = None,
) -> discord.Embed:
    template = pick_template(
        config.helper_recognition_embed_description,
        config.helper_recognition_embed_descriptions,
        rng,
    )
    description = render_template(
        template,
        {
            "helper": user_mention(helper_id),
            "asker": user_mention(asker_id),
            "thread": thread_name,
            "xp": xp,
        },
    )
    embed = _embed(description, title=config.helper_recognition_embed_title, rng=rng)
    _set_author(embed, helper)
    return embed


def build_fast_resolution_embed(
    config: LevelConfig,
    helper_id: str,
    asker_id: str,
    thread_name: str,
    hours: float,
    xp: int,
    helper: MemberProfile | None = None,
    rng: random.Random | None = None,
) -> discord.Embed:
    template = pick_template(
        config.fast_resolution_embed_description,
        config.fast_resolution_embed_descriptions,
        rng,
    )
    description = render_template(
        template,
        {
            "helper": user_mention(helper_id),
            "asker": user_mention(asker_id),
            "thread": thread_name,
            "hours": f"{hours:.1f}",
            "xp": xp,
        },
    )
    embed = _embed(description, title=config.fast_resolution_embed_title, rng=rng)
    _set_author(embed, helper)
    return embed


# ---------------------------------------------------------------------------
# Boosters
# ---------------------------------------------------------------------------
def build_booster_embed(
    config: LevelConfig,
    user_id: str,
    member: MemberProfile | None = None,
    rng: random.Random | None = None,
) -> discord.Embed:
    template = pick_template(
        config.booster_embed_description, config.booster_embed_descriptions, rng,
    )
    description = render_template(
        template,
        {
            "user": user_mention(user_id),
            "multiplier": format_multiplier(config.booster_xp_multiplier),
            "bonusXp": config.booster_bonus_xp_per_message,
            "helperBonus": format_multiplier(config.booster_helper_bonus_multiplier),
        },
    )
    embed = _embed(description, title=config.booster_embed_title, color=BOOST_PINK)
    _set_author(embed, member)
    return embed


# ---------------------------------------------------------------------------
# Monthly top helpers
# ---------------------------------------------------------------------------
def build_monthly_embed(
    config: LevelConfig,
    helpers: Sequence[tuple[str, int]],
    rewards: Sequence[int],
    month_name: str,
    rng: random.Random | None = None,
) -> discord.Embed:
    """*helpers* is up to three ``(user_id, helper_count)`` pairs, best first."""
    template = pick_template(
        config.monthly_top_helper_embed_description,
        config.monthly_top_helper_embed_descriptions,
        rng,
    )
    values: dict[str, object] = {"month": month_name}
    for place, (word, index) in enumerate(
        (("first", 0), ("second", 1), ("third", 2)), start=1
    ):
        if index < len(helpers):
            user_id, count = helpers[index]
            mention = user_mention(user_id)
        else:
            mention, count = "N/A", 0
        values[word] = mention
        values[f"{word}Xp"] = rewards[index]
        values[f"user{place}"] = mention
        values[f"count{place}"] = count
        values[f"xp{place}"] = rewards[index]
    description = render_template(template, values)
    return _embed(description, title=config.monthly_top_helper_embed_title, rng=rng)


# ---------------------------------------------------------------------------
# Level roles overview
# ---------------------------------------------------------------------------
def build_roles_embed(
    config: LevelConfig,
    roles: Sequence[RoleStep],
    rng: random.Random | None = None,
) -> discord.Embed:
    """List every level role, highest threshold first."""
    ordered = list(reversed(sort_roles(roles)))
    lines = [f"{role_mention(r.role_id)} • **{r.xp_required:,} XP**" for r in ordered]
    parts = [p for p in (config.roles_embed_description, "\n\n".join(lines)) if p]
    embed = _embed("\n\n".join(parts), title=config.roles_embed_title, rng=rng)
    count = len(ordered)
    embed.set_footer(text=f"{count} level role{'s' if count != 1 else ''} • Updated")
    return embed

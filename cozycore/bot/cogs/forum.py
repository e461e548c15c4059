"""
cozycore.bot.cogs.forum — /close thread
========================================

Closes a forum thread (lock + archive) and, when forum XP is on for that
forum, rewards the owner and lets them recognise one helper.

Only the thread owner or a member with Manage Threads may close.  The
helper picker answers only the invoker and times out after
``helper_select_timeout_seconds``; a timeout closes the thread with no
bonus.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from cozycore.bot.gateway import DiscordGuildGateway
from cozycore.constants import CLOSE_HELPER_SELECT_PREFIX
from cozycore.database.engine import run_db
from cozycore.services.forum_service import (
    MAX_HELPER_OPTIONS,
    collect_participants,
    forum_rewards_apply,
    hours_open,
    reward_helper,
)
from cozycore.services.level_service import XpSource, award_xp, load_level_config
from cozycore.services.notifier import random_pastel

if TYPE_CHECKING:
    from cozycore.bot.core import CozyBot
    from cozycore.database.models import LevelConfig

logger = logging.getLogger(__name__)


def _embed(title: str, description: str) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=random_pastel())


async def close_thread(thread: discord.Thread) -> None:
    try:
        await thread.edit(locked=True, archived=True)
    except discord.HTTPException as exc:
        logger.warning("Could not close thread %s: %s", thread.id, exc)


# ---------------------------------------------------------------------------
# Helper picker
# ---------------------------------------------------------------------------
class HelperSelect(discord.ui.Select):
    def __init__(self, thread_id: int, participants: dict[str, str], bonus_xp: int) -> None:
        options = [
            discord.SelectOption(label=name[:100], value=user_id, description=f"Award {bonus_xp} bonus XP")
            for user_id, name in list(participants.items())[:MAX_HELPER_OPTIONS]
        ]
        super().__init__(
            custom_id=f"{CLOSE_HELPER_SELECT_PREFIX}{thread_id}",
            placeholder="Select helpful member (optional)",
            min_values=0,
            max_values=1,
            options=options,
        )

    async def callback(self, interaction: discord.Interaction) -> None:
        await self.view.on_pick(interaction, self.values[0] if self.values else None)


class HelperPickView(discord.ui.View):
    def __init__(
        self,
        cog: Forum,
        thread: discord.Thread,
        config: LevelConfig,
        invoker_id: int,
        participants: dict[str, str],
    ) -> None:
        super().__init__(timeout=cog.bot.cfg.helper_select_timeout_seconds)
        self.cog = cog
        self.thread = thread
        self.config = config
        self.invoker_id = invoker_id
        self.message: discord.Message | None = None
        self.picked = False
        self.add_item(HelperSelect(thread.id, participants, config.helper_bonus_xp))

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.invoker_id:
            await interaction.response.send_message(
                "❌ Only the person closing the thread can pick a helper.", ephemeral=True,
            )
            return False
        return True

    async def on_pick(self, interaction: discord.Interaction, helper_id: str | None) -> None:
        self.picked = True
        self.stop()
        await interaction.response.defer()
        try:
            if helper_id:
                bonus = await reward_helper(
                    self.cog.bot.engine,
                    DiscordGuildGateway(self.thread.guild),
                    self.config,
                    helper_id=helper_id,
                    asker_id=str(self.thread.owner_id or interaction.user.id),
                    thread_id=str(self.thread.id),
                    thread_name=self.thread.name,
                    hours=hours_open(self.thread.created_at, datetime.now(UTC)),
                )
                extra = (
                    f" (includes +{self.config.fast_resolution_bonus_xp} fast resolution bonus!)"
                    if bonus.fast else ""
                )
                await interaction.edit_original_response(
                    embed=_embed(
                        "✨ Helper Recognized!",
                        f"<@{helper_id}> received **{bonus.total} bonus XP**!{extra}",
                    ),
                    view=None,
                )
            else:
                await interaction.edit_original_response(view=None)
        except Exception:
            logger.exception("Helper reward failed in thread %s", self.thread.id)
        await self.cog.close_later(self.thread)

    async def on_timeout(self) -> None:
        if self.picked:
            return
        if self.message is not None:
            try:
                await self.message.edit(
                    embed=_embed(
                        "✅ Thread Closed",
                        f"Thread owner received **{self.config.xp_on_thread_close} XP**.",
                    ),
                    view=None,
                )
            except discord.HTTPException as exc:
                logger.warning("Could not update close message in %s: %s", self.thread.id, exc)
        await close_thread(self.thread)


# ---------------------------------------------------------------------------
# Cog
# ---------------------------------------------------------------------------
class Forum(commands.Cog, name="Forum"):
    """Forum thread closing and helper recognition."""

    close = app_commands.Group(name="close", description="Close and manage forum threads")

    def __init__(self, bot: CozyBot) -> None:
        self.bot = bot

    async def close_later(self, thread: discord.Thread) -> None:
        await asyncio.sleep(self.bot.cfg.thread_close_delay_seconds)
        await close_thread(thread)

    @close.command(name="thread", description="Close the current forum thread and award XP")
    async def close_thread_command(self, interaction: discord.Interaction) -> None:
        thread = interaction.channel
        if not isinstance(thread, discord.Thread) or not isinstance(thread.parent, discord.ForumChannel):
            await interaction.response.send_message("❌ Use this in a forum thread.", ephemeral=True)
            return

        user = interaction.user
        can_manage = isinstance(user, discord.Member) and user.guild_permissions.manage_threads
        if thread.owner_id != user.id and not can_manage:
            await interaction.response.send_message(
                "❌ Only the thread owner or moderators can close this.", ephemeral=True,
            )
            return

        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message("❌ Server only.", ephemeral=True)
            return

        config = await run_db(load_level_config, self.bot.engine, str(guild.id))
        if not forum_rewards_apply(config, str(thread.parent.id)):
            await interaction.response.send_message("✅ Thread closed.", ephemeral=True)
            await close_thread(thread)
            return

        await interaction.response.defer()
        try:
            await self._reward_close(interaction, thread, config)
        except Exception:
            logger.exception("Error closing thread %s", thread.id)
            await interaction.followup.send(
                "❌ Something went wrong while closing this thread.", ephemeral=True,
            )

    async def _reward_close(
        self, interaction: discord.Interaction, thread: discord.Thread, config: LevelConfig
    ) -> None:
        owner_id = str(thread.owner_id) if thread.owner_id else None
        authors = [
            (str(m.author.id), m.author.name, m.author.bot)
            async for m in thread.history(limit=100)
        ]
        participants = collect_participants(authors, owner_id)

        if not participants:
            await interaction.followup.send(
                embed=_embed("✅ Thread Closed", "No XP awarded (no other participants)."),
            )
            await self.close_later(thread)
            return

        if owner_id:
            await award_xp(
                self.bot.engine, DiscordGuildGateway(thread.guild), owner_id,
                config.xp_on_thread_close, XpSource.THREAD,
            )

        if config.helper_bonus_xp <= 0:
            await interaction.followup.send(
                embed=_embed(
                    "✅ Thread Closed",
                    f"Thread owner received **{config.xp_on_thread_close} XP**.",
                ),
            )
            await self.close_later(thread)
            return

        view = HelperPickView(self, thread, config, interaction.user.id, participants)
        prompt = _embed(
            "🎉 Thread Resolved!",
            f"Thread owner received **{config.xp_on_thread_close} XP**.\n\n"
            f"Recognize a helpful member for **{config.helper_bonus_xp} bonus XP**?",
        )
        prompt.set_footer(
            text=f"Select a member or wait {self.bot.cfg.helper_select_timeout_seconds}s to skip"
        )
        view.message = await interaction.followup.send(embed=prompt, view=view, wait=True)


async def setup(bot: CozyBot) -> None:
    await bot.add_cog(Forum(bot))

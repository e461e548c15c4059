"""
cozycore.bot.cogs.tasks — Periodic Background Tasks
====================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Monthly Top Helper** — every ``monthly_helper_poll_seconds`` (60 by
  default), announces each guild whose configured day and hour have come.
- **Onboarding cleanup** — every ``onboarding_cleanup_minutes`` (5 by
  default), deletes expired welcome threads.

Both loops run once as soon as the bot is ready.  Failures are logged and
the loop carries on at the next tick.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from cozycore.database.engine import run_db
from cozycore.services import monthly_helper
from cozycore.services.onboarding_service import delete_thread_records, expired_threads

if TYPE_CHECKING:
    from cozycore.bot.core import CozyBot

logger = logging.getLogger(__name__)

THREAD_DELETE_REASON = "Onboarding thread auto-delete"


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background jobs."""

    def __init__(self, bot: CozyBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.monthly_loop.change_interval(seconds=self.bot.cfg.monthly_helper_poll_seconds)
        self.cleanup_loop.change_interval(minutes=self.bot.cfg.onboarding_cleanup_minutes)
        self.monthly_loop.start()
        self.cleanup_loop.start()

    async def cog_unload(self) -> None:
        self.monthly_loop.cancel()
        self.cleanup_loop.cancel()

    # -------------------------------------------------------------------
    # Monthly Top Helper
    # -------------------------------------------------------------------
    @tasks.loop(seconds=60)
    async def monthly_loop(self):
        try:
            runs = await monthly_helper.check_all(self.bot.engine, self.bot.gateway_for)
            if runs:
                logger.info("Monthly top helper ran for %d guild(s)", len(runs))
        except Exception:
            logger.exception("Monthly top helper check failed", extra={"task": "monthly_helper"})

    @monthly_loop.before_loop
    async def _wait_monthly(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Onboarding thread cleanup
    # -------------------------------------------------------------------
    @tasks.loop(minutes=5)
    async def cleanup_loop(self):
        try:
            deleted = await self.cleanup_expired_threads()
            if deleted:
                logger.info("Onboarding cleanup removed %d thread record(s)", deleted)
        except Exception:
            logger.exception("Onboarding cleanup failed", extra={"task": "onboarding_cleanup"})

    @cleanup_loop.before_loop
    async def _wait_cleanup(self):
        await self.bot.wait_until_ready()

    async def cleanup_expired_threads(self, now: datetime | None = None) -> int:
        """Delete every expired welcome thread, then forget all of them."""
        expired = await run_db(expired_threads, self.bot.engine, now or datetime.now(UTC))
        for guild_id, thread_id in expired:
            await self._delete_thread(guild_id, thread_id)
        return await run_db(delete_thread_records, self.bot.engine, [t for _, t in expired])

    async def _delete_thread(self, guild_id: str, thread_id: str) -> None:
        guild = self.bot.get_guild(int(guild_id))
        if guild is None:
            return
        try:
            thread = guild.get_thread(int(thread_id)) or await guild.fetch_channel(int(thread_id))
            if isinstance(thread, discord.Thread):
                await thread.delete(reason=THREAD_DELETE_REASON)
                logger.info("Deleted onboarding thread %s in guild %s", thread_id, guild_id)
        except discord.NotFound:
            logger.debug("Onboarding thread %s already gone", thread_id)
        except Exception:
            logger.exception("Failed to delete onboarding thread %s", thread_id)


async def setup(bot: CozyBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))

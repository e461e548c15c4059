"""
cozycore.bot.cogs.boosters — Server boost thank-you
====================================================

Posts the booster embed when a member starts boosting (``premium_since``
goes from unset to set) and the guild has the feature enabled with a
channel.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from cozycore.bot.gateway import DiscordGuildGateway, profile_of
from cozycore.database.engine import run_db
from cozycore.services.embeds import build_booster_embed
from cozycore.services.level_service import load_level_config
from cozycore.services.notifier import deliver

if TYPE_CHECKING:
    from cozycore.bot.core import CozyBot

logger = logging.getLogger(__name__)


def started_boosting(before: discord.Member, after: discord.Member) -> bool:
    return before.premium_since is None and after.premium_since is not None


class Boosters(commands.Cog, name="Boosters"):
    def __init__(self, bot: CozyBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if not started_boosting(before, after):
            return
        try:
            await self.thank_booster(after)
        except Exception:
            logger.exception("Booster thank-you failed for %s", after.id)

    async def thank_booster(self, member: discord.Member) -> bool:
        config = await run_db(load_level_config, self.bot.engine, str(member.guild.id))
        if config is None or not config.booster_enabled or not config.booster_channel_id:
            return False
        logger.info("%s started boosting guild %s", member.id, member.guild.id)
        return await deliver(
            DiscordGuildGateway(member.guild),
            config.booster_channel_id,
            build_booster_embed(config, str(member.id), profile_of(member)),
        )


async def setup(bot: CozyBot) -> None:
    await bot.add_cog(Boosters(bot))

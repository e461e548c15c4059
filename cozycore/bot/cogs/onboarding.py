"""
cozycore.bot.cogs.onboarding — Welcome threads
===============================================

On member join (when onboarding is enabled):

1. Give the configured join roles that still exist.
2. Open a private thread in the welcome channel named from the template.
3. Play back the welcome messages in order, with a typing indicator and
   delay, attaching a role select menu where a message offers roles.
4. Record the thread so the cleanup task deletes it after 1 or 7 days.

Role select menus are handled from ``on_interaction`` by custom id prefix,
so menus posted before a restart keep working.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from cozycore.constants import ONBOARDING_SELECT_PREFIX
from cozycore.database.engine import run_db
from cozycore.services.onboarding_service import (
    NewcomerContext,
    load_for_newcomer,
    record_thread,
    render_welcome,
    role_selection_diff,
    selection_summary,
    thread_name,
)

if TYPE_CHECKING:
    from cozycore.bot.core import CozyBot

logger = logging.getLogger(__name__)

THREAD_AUTO_ARCHIVE_MINUTES = 1440


def role_select_view(thread_id: int, roles: list[discord.Role]) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(discord.ui.Select(
        custom_id=f"{ONBOARDING_SELECT_PREFIX}{thread_id}",
        placeholder="Select your roles...",
        min_values=0,
        max_values=len(roles),
        options=[
            discord.SelectOption(label=r.name, value=str(r.id), description=f"Get the {r.name} role")
            for r in roles
        ],
    ))
    return view


def _menu_role_ids(message: discord.Message | None, custom_id: str) -> list[str]:
    if message is None:
        return []
    for row in message.components:
        for child in getattr(row, "children", []):
            if getattr(child, "custom_id", None) == custom_id:
                return [o.value for o in child.options]
    return []


class Onboarding(commands.Cog, name="Onboarding"):
    """Private welcome threads for newcomers."""

    def __init__(self, bot: CozyBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # Member join
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            await self.welcome(member)
        except Exception:
            logger.exception("Onboarding failed for %s in guild %s", member.id, member.guild.id)

    async def welcome(self, member: discord.Member) -> discord.Thread | None:
        guild = member.guild
        loaded = await run_db(load_for_newcomer, self.bot.engine, str(guild.id))
        if loaded is None:
            return None
        config, messages = loaded

        channel = guild.get_channel(int(config.welcome_channel_id))
        if not isinstance(channel, discord.TextChannel):
            logger.warning(
                "Welcome channel %s missing or not a text channel in guild %s",
                config.welcome_channel_id, guild.id,
            )
            return None
        if not messages:
            logger.info("No welcome messages configured for guild %s", guild.id)
            return None

        join_roles = [r for r in (guild.get_role(int(rid)) for rid in config.roles_on_join or []) if r]
        if join_roles:
            try:
                await member.add_roles(*join_roles, reason="Onboarding auto-role assignment")
            except discord.HTTPException as exc:
                logger.warning("Could not assign join roles to %s: %s", member.id, exc)

        ctx = NewcomerContext(
            user_id=str(member.id),
            username=member.name,
            server_name=guild.name,
            member_count=guild.member_count or 0,
        )
        thread = await channel.create_thread(
            name=thread_name(config.thread_name_template, ctx),
            type=discord.ChannelType.private_thread,
            auto_archive_duration=THREAD_AUTO_ARCHIVE_MINUTES,
            reason=f"Onboarding thread for {member}",
        )
        await thread.add_user(member)

        for message in messages:
            content = render_welcome(message.content, ctx)
            roles = [r for r in (guild.get_role(int(rid)) for rid in message.selectable_roles or []) if r]
            if config.show_typing_indicator:
                async with thread.typing():
                    await asyncio.sleep((config.typing_delay or 0) / 1000)
            if roles:
                view = role_select_view(thread.id, roles)
                await thread.send(content, view=view)
                # Answered from on_interaction, which survives restarts.
                view.stop()
            else:
                await thread.send(content)

        await run_db(
            record_thread, self.bot.engine, str(guild.id), str(member.id),
            str(thread.id), config.thread_auto_delete,
        )
        logger.info("Created welcome thread for %s in guild %s", member.id, guild.id)
        return thread

    # -------------------------------------------------------------------
    # Role select menus
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        if not custom_id.startswith(ONBOARDING_SELECT_PREFIX):
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            content = await self.apply_role_selection(interaction, custom_id)
        except Exception:
            logger.exception("Onboarding role selection failed for %s", interaction.user.id)
            content = "❌ Something went wrong while updating your roles."
        await interaction.followup.send(content, ephemeral=True)

    async def apply_role_selection(self, interaction: discord.Interaction, custom_id: str) -> str:
        member = interaction.user
        guild = interaction.guild
        if guild is None:
            return "❌ Could not find the server."
        if not isinstance(member, discord.Member):
            return "❌ Could not find your member data."

        selected = [str(v) for v in (interaction.data or {}).get("values", [])]
        held = {str(r.id) for r in member.roles}
        to_add, to_remove = role_selection_diff(
            selected, _menu_role_ids(interaction.message, custom_id), held,
        )

        added: list[str] = []
        removed: list[str] = []
        for role_id in to_add:
            role = guild.get_role(int(role_id))
            if role is None:
                continue
            try:
                await member.add_roles(role, reason="Onboarding role selection")
                added.append(role.name)
            except discord.HTTPException as exc:
                logger.warning("Could not add role %s to %s: %s", role_id, member.id, exc)
        for role_id in to_remove:
            role = guild.get_role(int(role_id))
            if role is None:
                continue
            try:
                await member.remove_roles(role, reason="Onboarding role deselection")
                removed.append(role.name)
            except discord.HTTPException as exc:
                logger.warning("Could not remove role %s from %s: %s", role_id, member.id, exc)

        logger.info(
            "%s updated onboarding roles: +%d -%d", member.id, len(added), len(removed),
        )
        return selection_summary(added, removed)


async def setup(bot: CozyBot) -> None:
    await bot.add_cog(Onboarding(bot))

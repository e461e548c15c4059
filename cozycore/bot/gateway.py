"""
cozycore.bot.gateway — GuildGateway over a live discord.Guild
==============================================================

Adapts the bot's cached :class:`discord.Guild` to
:class:`cozycore.services.gateway.GuildGateway`.  Members missing from the
cache are fetched over HTTP; a member who has left resolves to ``None``.
"""

from __future__ import annotations

import logging

import discord

from cozycore.services.gateway import ChannelUnavailable, MemberProfile

logger = logging.getLogger(__name__)


def profile_of(member: discord.Member) -> MemberProfile:
    return MemberProfile(
        user_id=str(member.id),
        display_name=member.display_name,
        avatar_url=member.display_avatar.url,
        role_ids=frozenset(str(r.id) for r in member.roles),
    )


class DiscordGuildGateway:
    def __init__(self, guild: discord.Guild) -> None:
        self.guild = guild

    @property
    def guild_id(self) -> str:
        return str(self.guild.id)

    async def _member(self, user_id: str) -> discord.Member | None:
        member = self.guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await self.guild.fetch_member(int(user_id))
        except discord.NotFound:
            return None

    async def fetch_member(self, user_id: str) -> MemberProfile | None:
        member = await self._member(user_id)
        return profile_of(member) if member is not None else None

    async def add_role(self, user_id: str, role_id: str) -> None:
        member = await self._member(user_id)
        if member is None:
            raise LookupError(f"Member {user_id} is not in guild {self.guild_id}")
        await member.add_roles(discord.Object(id=int(role_id)), reason="Level role")

    async def remove_role(self, user_id: str, role_id: str) -> None:
        member = await self._member(user_id)
        if member is None:
            return
        await member.remove_roles(discord.Object(id=int(role_id)), reason="Level role")

    async def send_embed(self, channel_id: str, embed: discord.Embed) -> str | None:
        channel = self.guild.get_channel_or_thread(int(channel_id))
        if channel is None:
            try:
                channel = await self.guild.fetch_channel(int(channel_id))
            except discord.NotFound:
                raise ChannelUnavailable(channel_id) from None
        if not isinstance(channel, discord.abc.Messageable):
            raise ChannelUnavailable(channel_id)
        message = await channel.send(embed=embed)
        return str(message.id)

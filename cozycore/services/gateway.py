"""
cozycore.services.gateway — Guild capability interface
=======================================================

The award engine, notifier and scheduled jobs only ever need a handful of
operations on a guild.  :class:`GuildGateway` names exactly those, so the
same logic runs against a live ``discord.Guild`` in the bot
(:class:`cozycore.bot.gateway.DiscordGuildGateway`), against Discord's REST
API from the dashboard (:class:`cozycore.api.discord_client.RestGuildGateway`),
and against an in-memory fake in tests.

Implementations raise on failure.  Deciding what is best-effort is the
caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import discord


@dataclass(frozen=True, slots=True)
class MemberProfile:
    """What the notifier needs to put a member on an embed."""

    user_id: str
    display_name: str
    avatar_url: str | None = None
    role_ids: frozenset[str] = frozenset()


class ChannelUnavailable(Exception):
    """The target channel does not exist or is not text-capable."""


@runtime_checkable
class GuildGateway(Protocol):
    @property
    def guild_id(self) -> str: ...

    async def fetch_member(self, user_id: str) -> MemberProfile | None:
        """Return the member, or ``None`` if they left the guild."""
        ...

    async def add_role(self, user_id: str, role_id: str) -> None: ...

    async def remove_role(self, user_id: str, role_id: str) -> None: ...

    async def send_embed(self, channel_id: str, embed: discord.Embed) -> str | None:
        """Post *embed* to *channel_id*; return the created message id."""
        ...

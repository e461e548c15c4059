"""
cozycore.api.discord_client — Discord REST access for the dashboard
====================================================================

The dashboard has no gateway connection.  Everything it needs from Discord
goes through the v10 REST API with ``httpx``:

- the signed-in user's guild list (OAuth bearer token, cached 60 s per token);
- bot-token calls: send/edit messages, list channels and roles, search members;
- :class:`RestGuildGateway`, which lets the award engine run role
  progression from a dashboard request exactly as it does in the bot.
"""

from __future__ import annotations

import logging
import os
import time
from typing import TYPE_CHECKING, Any

import httpx

from cozycore.services.gateway import ChannelUnavailable, MemberProfile

if TYPE_CHECKING:
    import discord

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
CDN = "https://cdn.discordapp.com"
GUILDS_CACHE_TTL_SECONDS = 60
REQUEST_TIMEOUT_SECONDS = 10


class DiscordApiError(Exception):
    """A non-2xx response from Discord."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message or f"Discord API returned {status}")
        self.status = status


def bot_token() -> str | None:
    return os.getenv("DISCORD_BOT_TOKEN") or os.getenv("DISCORD_TOKEN") or None


def avatar_url(user_id: str, avatar_hash: str | None) -> str | None:
    if not avatar_hash:
        return None
    return f"{CDN}/avatars/{user_id}/{avatar_hash}.png"


# ---------------------------------------------------------------------------
# User guilds (OAuth token)
# ---------------------------------------------------------------------------
_guilds_cache: dict[str, tuple[float, list[dict[str, Any]]]] = {}


def clear_guilds_cache() -> None:
    _guilds_cache.clear()


async def fetch_user_guilds(access_token: str) -> list[dict[str, Any]]:
    """Return the user's partial guilds, including their ``permissions``.

    On a Discord 429 a stale cached copy is served when one exists.
    """
    cached = _guilds_cache.get(access_token)
    now = time.monotonic()
    if cached and now - cached[0] < GUILDS_CACHE_TTL_SECONDS:
        return cached[1]

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
        resp = await client.get(
            f"{DISCORD_API}/users/@me/guilds",
            headers={"Authorization": f"Bearer {access_token}"},
        )

    if resp.status_code == 429:
        if cached:
            logger.info("Discord rate limited guild fetch; serving cached list")
            return cached[1]
        retry_after = resp.headers.get("Retry-After", "60")
        raise DiscordApiError(
            429, f"Rate limited by Discord. Try again in {retry_after} seconds."
        )
    if resp.status_code != 200:
        raise DiscordApiError(resp.status_code, "Failed to fetch guilds")

    guilds = resp.json()
    _guilds_cache[access_token] = (now, guilds)
    return guilds


# ---------------------------------------------------------------------------
# Bot token client
# ---------------------------------------------------------------------------
class DiscordRestClient:
    """Thin async wrapper over the bot-authenticated endpoints we use."""

    def __init__(self, token: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.token = token
        self.transport = transport

    async def request(self, method: str, path: str, **kwargs) -> Any:
        async with httpx.AsyncClient(
            base_url=DISCORD_API,
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=self.transport,
            headers={"Authorization": f"Bot {self.token}"},
        ) as client:
            resp = await client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            logger.warning("Discord %s %s failed: %d %s", method, path, resp.status_code, resp.text[:200])
            raise DiscordApiError(resp.status_code)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # Messages
    async def send_message(self, channel_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", f"/channels/{channel_id}/messages", json=payload)

    async def edit_message(
        self, channel_id: str, message_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.request(
            "PATCH", f"/channels/{channel_id}/messages/{message_id}", json=payload,
        )

    # Guild resources
    async def get_channels(self, guild_id: str) -> list[dict[str, Any]]:
        return await self.request("GET", f"/guilds/{guild_id}/channels")

    async def get_roles(self, guild_id: str) -> list[dict[str, Any]]:
        return await self.request("GET", f"/guilds/{guild_id}/roles")

    async def search_members(self, guild_id: str, query: str, limit: int = 25) -> list[dict[str, Any]]:
        return await self.request(
            "GET", f"/guilds/{guild_id}/members/search", params={"query": query, "limit": limit},
        )

    async def get_member(self, guild_id: str, user_id: str) -> dict[str, Any] | None:
        try:
            return await self.request("GET", f"/guilds/{guild_id}/members/{user_id}")
        except DiscordApiError as exc:
            if exc.status == 404:
                return None
            raise

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        try:
            return await self.request("GET", f"/users/{user_id}")
        except DiscordApiError as exc:
            if exc.status == 404:
                return None
            raise

    # Member roles
    async def add_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        await self.request("PUT", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}")

    async def remove_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        await self.request("DELETE", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}")


# ---------------------------------------------------------------------------
# GuildGateway over REST
# ---------------------------------------------------------------------------
class RestGuildGateway:
    """:class:`~cozycore.services.gateway.GuildGateway` backed by the REST API."""

    def __init__(self, guild_id: str, client: DiscordRestClient) -> None:
        self._guild_id = str(guild_id)
        self.client = client

    @property
    def guild_id(self) -> str:
        return self._guild_id

    async def fetch_member(self, user_id: str) -> MemberProfile | None:
        data = await self.client.get_member(self._guild_id, user_id)
        if data is None:
            return None
        user = data.get("user") or {}
        return MemberProfile(
            user_id=str(user_id),
            display_name=data.get("nick") or user.get("global_name") or user.get("username") or str(user_id),
            avatar_url=avatar_url(str(user_id), user.get("avatar")),
            role_ids=frozenset(str(r) for r in data.get("roles", [])),
        )

    async def add_role(self, user_id: str, role_id: str) -> None:
        await self.client.add_role(self._guild_id, user_id, role_id)

    async def remove_role(self, user_id: str, role_id: str) -> None:
        await self.client.remove_role(self._guild_id, user_id, role_id)

    async def send_embed(self, channel_id: str, embed: discord.Embed) -> str | None:
        try:
            message = await self.client.send_message(channel_id, {"embeds": [embed.to_dict()]})
        except DiscordApiError as exc:
            if exc.status == 404:
                raise ChannelUnavailable(channel_id) from exc
            raise
        return str(message["id"]) if message else None

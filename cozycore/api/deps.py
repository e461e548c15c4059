"""
cozycore.api.deps — FastAPI dependency injection
=================================================

Authentication and per-guild authorization for the dashboard:

- :func:`get_current_user` decodes the dashboard JWT (401 otherwise).
- :func:`require_guild_manager` checks that the user can manage the guild
  according to Discord (Manage Server or Administrator).
- :func:`require_installed_guild` additionally needs the bot to be in it.
- :func:`get_rest_client` hands out a bot-token REST client.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from cozycore.api.discord_client import (
    DiscordApiError,
    DiscordRestClient,
    bot_token,
    fetch_user_guilds,
)
from cozycore.constants import has_manage_guild_permission
from cozycore.database.engine import create_db_engine, run_db
from cozycore.services.guild_service import is_installed

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "cozycore-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Validate the dashboard JWT and return its payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return payload


async def get_user_guilds(
    user: dict[str, Any] = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """The signed-in user's Discord guilds, straight from their OAuth token."""
    access_token = user.get("access_token")
    if not access_token:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Discord account not linked")
    try:
        return await fetch_user_guilds(access_token)
    except DiscordApiError as exc:
        if exc.status == 429:
            raise HTTPException(status.HTTP_429_TOO_MANY_REQUESTS, str(exc))
        if exc.status == 401:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
        logger.warning("Fetching user guilds failed: %s", exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Failed to fetch guilds")


# ---------------------------------------------------------------------------
# Guild authorization
# ---------------------------------------------------------------------------
async def require_guild_manager(
    guild_id: str,
    user_guilds: list[dict[str, Any]] = Depends(get_user_guilds),
) -> dict[str, Any]:
    """Return the user's partial guild if they may manage it. Raises 403 otherwise."""
    guild = next((g for g in user_guilds if str(g.get("id")) == guild_id), None)
    if guild is None or not has_manage_guild_permission(guild.get("permissions")):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "You don't have access to this server")
    return guild


async def require_installed_guild(
    guild_id: str,
    guild: dict[str, Any] = Depends(require_guild_manager),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    if not await run_db(is_installed, engine, guild_id):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Bot is not installed in this server")
    return guild


# ---------------------------------------------------------------------------
# Discord REST
# ---------------------------------------------------------------------------
def get_rest_client() -> DiscordRestClient:
    token = bot_token()
    if not token:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Bot token not configured")
    return DiscordRestClient(token)


def ok(data: Any = None) -> dict[str, Any]:
    """Success envelope; errors are rendered by the app's exception handlers."""
    return {"success": True, "data": data}


def get_optional_rest_client() -> DiscordRestClient | None:
    """Like :func:`get_rest_client` for routes where Discord calls are extras."""
    token = bot_token()
    return DiscordRestClient(token) if token else None

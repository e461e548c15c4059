"""
cozycore.api.auth — Discord OAuth2 sign-in for the dashboard
=============================================================

``/login`` sends the admin to Discord's consent screen with a one-time
``state``; ``/callback`` trades the code for an access token and issues the
dashboard JWT.  The JWT keeps that access token so later requests can ask
Discord which guilds the admin manages.
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import Engine, delete
from sqlalchemy.orm import Session

from cozycore.api.deps import JWT_ALGORITHM, JWT_SECRET, get_current_user, get_engine, ok
from cozycore.api.discord_client import DISCORD_API
from cozycore.database.engine import get_session, run_db
from cozycore.database.models import OAuthState

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
OAUTH_SCOPE = "identify guilds"
STATE_TTL = timedelta(minutes=10)
TOKEN_LIFETIME = timedelta(hours=12)


@dataclass(frozen=True, slots=True)
class OAuthSettings:
    client_id: str
    client_secret: str
    redirect_uri: str
    frontend_url: str

    @classmethod
    def from_env(cls) -> OAuthSettings:
        """Read the four OAuth variables; a 500 names whichever are missing."""
        names = {
            "client_id": "DISCORD_CLIENT_ID",
            "client_secret": "DISCORD_CLIENT_SECRET",
            "redirect_uri": "DISCORD_REDIRECT_URI",
            "frontend_url": "FRONTEND_URL",
        }
        values = {field: os.getenv(env, "").strip() for field, env in names.items()}
        missing = [names[field] for field, value in values.items() if not value]
        if missing:
            raise HTTPException(500, "Discord OAuth is not configured: missing " + ", ".join(missing))
        values["frontend_url"] = values["frontend_url"].rstrip("/")
        return cls(**values)


# ---------------------------------------------------------------------------
# One-time state tokens
# ---------------------------------------------------------------------------
def _prune_states(session: Session) -> None:
    session.execute(delete(OAuthState).where(OAuthState.created_at < datetime.now(UTC) - STATE_TTL))


def issue_state(engine: Engine) -> str:
    state = secrets.token_urlsafe(32)
    with get_session(engine) as session:
        _prune_states(session)
        session.add(OAuthState(state=state))
    return state


def consume_state(engine: Engine, state: str) -> bool:
    """True exactly once per issued, unexpired state."""
    with get_session(engine) as session:
        _prune_states(session)
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


# ---------------------------------------------------------------------------
# Discord token exchange
# ---------------------------------------------------------------------------
async def exchange_code(settings: OAuthSettings, code: str) -> tuple[str, dict[str, Any]]:
    """Return ``(access_token, discord_user)`` for an authorization code."""
    async with httpx.AsyncClient(timeout=10, transport=httpx.AsyncHTTPTransport(retries=1)) as client:
        token_resp = await client.post(
            f"{DISCORD_API}/oauth2/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.redirect_uri,
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "scope": OAUTH_SCOPE,
            },
        )
        if token_resp.status_code != 200:
            raise HTTPException(400, "OAuth token exchange failed")
        access_token = token_resp.json().get("access_token")
        if not access_token:
            raise HTTPException(400, "No access token returned")

        user_resp = await client.get(
            f"{DISCORD_API}/users/@me", headers={"Authorization": f"Bearer {access_token}"},
        )
    if user_resp.status_code != 200:
        raise HTTPException(400, "Failed to fetch Discord user")
    return access_token, user_resp.json()


def issue_token(discord_user: dict[str, Any], access_token: str) -> str:
    payload = {
        "sub": str(discord_user["id"]),
        "username": discord_user.get("global_name") or discord_user.get("username", "Unknown"),
        "avatar": discord_user.get("avatar"),
        "access_token": access_token,
        "exp": datetime.now(UTC) + TOKEN_LIFETIME,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/login")
async def login(engine=Depends(get_engine)):
    settings = OAuthSettings.from_env()
    state = await run_db(issue_state, engine)
    query = urlencode({
        "client_id": settings.client_id,
        "redirect_uri": settings.redirect_uri,
        "response_type": "code",
        "scope": OAUTH_SCOPE,
        "state": state,
    })
    return RedirectResponse(f"{AUTHORIZE_URL}?{query}")


@router.get("/callback")
async def callback(code: str, state: str, engine=Depends(get_engine)):
    settings = OAuthSettings.from_env()
    if not await run_db(consume_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    access_token, discord_user = await exchange_code(settings, code)
    token = issue_token(discord_user, access_token)
    logger.info("Dashboard login for Discord user %s", discord_user["id"])
    return RedirectResponse(f"{settings.frontend_url}/auth/callback?token={token}")


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return ok({
        "id": user["sub"],
        "username": user.get("username", "Unknown"),
        "avatar": user.get("avatar"),
    })

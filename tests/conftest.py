"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import json
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of cozycore.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from cozycore.database.engine import get_session  # noqa: E402
from cozycore.database.models import (  # noqa: E402
    Base,
    Guild,
    LevelConfig,
    LevelRole,
    MemberXp,
)
from cozycore.services.gateway import ChannelUnavailable, MemberProfile  # noqa: E402

GUILD_ID = "100"

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


def run_async(coro):
    """Run a coroutine on a fresh event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all CozyCore tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------
def add_guild(engine: Engine, guild_id: str = GUILD_ID, name: str = "Cozy Corner") -> None:
    with get_session(engine) as session:
        session.add(Guild(id=guild_id, name=name, owner_id="1", settings={}))


def add_level_config(engine: Engine, guild_id: str = GUILD_ID, **overrides) -> None:
    """Insert an enabled level config; column defaults fill the rest."""
    values = {"enabled": True, **overrides}
    with get_session(engine) as session:
        session.add(LevelConfig(guild_id=guild_id, **values))


def add_level_roles(engine: Engine, *steps: tuple[str, int], guild_id: str = GUILD_ID) -> None:
    """``add_level_roles(engine, ("r1", 100), ("r2", 500))``"""
    with get_session(engine) as session:
        for order, (role_id, xp) in enumerate(steps):
            session.add(LevelRole(guild_id=guild_id, role_id=role_id, xp_required=xp, order=order))


def add_member(engine: Engine, user_id: str, guild_id: str = GUILD_ID, **fields) -> None:
    values = {
        "total_xp": 0,
        "xp_earned_today": 0,
        "xp_earned_this_hour": 0,
        "monthly_helper_count": 0,
        **fields,
    }
    with get_session(engine) as session:
        session.add(MemberXp(guild_id=guild_id, user_id=user_id, **values))


# ---------------------------------------------------------------------------
# Fake guild gateway
# ---------------------------------------------------------------------------
class FakeGateway:
    """In-memory :class:`~cozycore.services.gateway.GuildGateway`.

    Every user is a member unless listed in ``departed``.
    """

    def __init__(self, guild_id: str = GUILD_ID) -> None:
        self._guild_id = guild_id
        self.departed: set[str] = set()
        self.unavailable_channels: set[str] = set()
        self.fail_add = False
        self.fail_remove = False
        self.roles_added: list[tuple[str, str]] = []
        self.roles_removed: list[tuple[str, str]] = []
        self.sent: list[tuple[str, object]] = []

    @property
    def guild_id(self) -> str:
        return self._guild_id

    async def fetch_member(self, user_id: str) -> MemberProfile | None:
        if user_id in self.departed:
            return None
        return MemberProfile(user_id=user_id, display_name=f"user-{user_id}")

    async def add_role(self, user_id: str, role_id: str) -> None:
        if self.fail_add:
            raise RuntimeError("missing permissions")
        self.roles_added.append((user_id, role_id))

    async def remove_role(self, user_id: str, role_id: str) -> None:
        if self.fail_remove:
            raise RuntimeError("missing permissions")
        self.roles_removed.append((user_id, role_id))

    async def send_embed(self, channel_id: str, embed) -> str | None:
        if channel_id in self.unavailable_channels:
            raise ChannelUnavailable(channel_id)
        self.sent.append((channel_id, embed))
        return str(len(self.sent))

    def sent_to(self, channel_id: str) -> list:
        return [embed for cid, embed in self.sent if cid == channel_id]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# ---------------------------------------------------------------------------
# Fake Discord REST API (httpx mock transport)
# ---------------------------------------------------------------------------
class FakeDiscord:
    """Answers the bot-token REST calls the dashboard makes.

    ``respond(method, path, status, payload)`` overrides a single endpoint;
    everything else gets a plausible default.  ``requests`` records
    ``(method, path, json_body)`` in call order.
    """

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, object]] = []
        self.routes: dict[tuple[str, str], tuple[int, object]] = {}
        self._next_message_id = 9000

    def respond(self, method: str, path: str, status: int = 200, payload: object = None) -> None:
        self.routes[(method, path)] = (status, payload)

    def calls(self, method: str) -> list[tuple[str, object]]:
        return [(path, body) for m, path, body in self.requests if m == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v10")
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if (request.method, path) in self.routes:
            status, payload = self.routes[(request.method, path)]
            if payload is None:
                return httpx.Response(status)
            return httpx.Response(status, json=payload)

        if request.method == "POST" and path.endswith("/messages"):
            self._next_message_id += 1
            return httpx.Response(200, json={"id": str(self._next_message_id)})
        if request.method == "PATCH" and "/messages/" in path:
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[1]})
        if request.method in ("PUT", "DELETE"):
            return httpx.Response(204)
        if path.endswith("/members/search"):
            return httpx.Response(200, json=[])
        if "/members/" in path:
            user_id = path.rsplit("/", 1)[1]
            return httpx.Response(
                200, json={"user": {"id": user_id, "username": f"user{user_id}"}, "roles": []},
            )
        if path.startswith("/users/"):
            user_id = path.rsplit("/", 1)[1]
            return httpx.Response(200, json={"id": user_id, "username": f"user{user_id}"})
        return httpx.Response(404, json={"message": "Unknown"})

    def client(self):
        from cozycore.api.discord_client import DiscordRestClient

        return DiscordRestClient("test-bot-token", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def discord_api() -> FakeDiscord:
    return FakeDiscord()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------
def make_token(
    sub: str = "99999",
    username: str = "FixtureAdmin",
    access_token: str | None = "discord-access-token",
) -> str:
    """Create a dashboard JWT.  Usable as both a fixture and a factory function."""
    import jwt

    import cozycore.api.deps as deps

    payload = {"sub": sub, "username": username}
    if access_token:
        payload["access_token"] = access_token
    return jwt.encode(payload, deps.JWT_SECRET, algorithm=deps.JWT_ALGORITHM)


def auth_headers(token: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token or make_token()}"}


@pytest.fixture
def user_guilds() -> list[dict]:
    """The signed-in user's Discord guilds; mutate to change permissions."""
    return [
        {"id": GUILD_ID, "name": "Cozy Corner", "icon": None, "owner": True, "permissions": "32"},
        {"id": "200", "name": "Other Place", "icon": None, "owner": False, "permissions": "0"},
    ]


def override_dependency(app, name: str, value) -> None:
    """Override *name* everywhere it is referenced.

    ``importlib.reload(cozycore.api.deps)`` (see test_jwt_startup) creates
    new function objects, while routers keep the ones they imported, so
    both generations are overridden.
    """
    import cozycore.api.deps as deps
    import cozycore.api.rate_limit as rate_limit
    from cozycore.api import auth
    from cozycore.api.routes import embeds, guilds, leaderboard, level, onboarding

    for module in (deps, rate_limit, auth, embeds, guilds, leaderboard, level, onboarding):
        fn = getattr(module, name, None)
        if fn is not None:
            app.dependency_overrides[fn] = value


@pytest.fixture
def client(db_engine, discord_api, user_guilds, monkeypatch):
    """FastAPI TestClient wired to the SQLite engine and the fake Discord API."""
    from fastapi.testclient import TestClient

    import cozycore.api.deps as deps
    from cozycore.api.main import app
    from cozycore.api.rate_limit import configure_rate_limiter

    async def _fetch_user_guilds(access_token: str):
        return user_guilds

    monkeypatch.setattr(deps, "fetch_user_guilds", _fetch_user_guilds)
    configure_rate_limiter(engine=db_engine)
    override_dependency(app, "get_engine", lambda: db_engine)
    override_dependency(app, "get_rest_client", discord_api.client)
    override_dependency(app, "get_optional_rest_client", discord_api.client)

    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()

"""
cozycore.database.engine — Database Connection & Async Helper
==============================================================

Discord bots run on an ``asyncio`` event loop, while SQLAlchemy + psycopg2
is **synchronous**.  Calling the database directly from a listener would
freeze the gateway until the query returns.

The bridge:

    1. An event fires in Discord (async world).
    2. The cog calls ``await run_db(some_function, engine, arg1, arg2)``.
    3. ``run_db`` ships the synchronous function to a thread pool via
       ``asyncio.to_thread()``.
    4. The result is awaited back in the cog, which can then talk to Discord.

The dashboard API shares the same engine factory and session helper.

Usage::

    from cozycore.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async cog method:
    config = await run_db(get_level_config, engine, guild_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from cozycore.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    The pool is sized for a bot and a dashboard sharing one PostgreSQL
    instance: five persistent connections, ten overflow, a 10 s checkout
    timeout and hourly recycling.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`cozycore.database.models`.

    Production schemas are managed by Alembic (``alembic upgrade head``);
    ``create_all`` stays as a safety net for dev/test databases.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Guild(id="123", name="Cozy", owner_id="456"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call made from a cog goes through this wrapper::

        result = await run_db(my_sync_db_function, engine, user_id)

    Under the hood it calls :func:`asyncio.to_thread`, so the bot's event
    loop is never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)

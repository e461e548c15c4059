"""
cozycore.api.rate_limit — Per-Admin Mutation Rate Limiting
===========================================================

Dashboard writes (POST/PUT/PATCH/DELETE) are throttled per signed-in admin,
keyed by the JWT ``sub``: 30 per sliding 60-second window by default.  The
window lives in ``admin_rate_limit_events`` so the API can restart, or run
several workers, without resetting anyone's window.

Over the limit the request fails with 429 and a ``Retry-After`` header.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, select

from cozycore.api.deps import get_current_user
from cozycore.database.engine import get_session
from cozycore.database.models import AdminRateLimitEvent

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _aware(value: datetime) -> datetime:
    # SQLite hands timestamps back naive
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class AdminRateLimiter:
    """Sliding-window limiter over ``admin_rate_limit_events``.

    :meth:`check` and :meth:`record` both return an info dict with
    ``remaining``, ``reset`` (seconds) and ``limit``.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _window_timestamps(self, session, admin_id: str, now: datetime) -> list[datetime]:
        """Drop this admin's expired events and return the rest, oldest first."""
        session.execute(
            delete(AdminRateLimitEvent).where(
                AdminRateLimitEvent.admin_id == admin_id,
                AdminRateLimitEvent.timestamp < now - timedelta(seconds=self.window_seconds),
            )
        )
        return list(session.scalars(
            select(AdminRateLimitEvent.timestamp)
            .where(AdminRateLimitEvent.admin_id == admin_id)
            .order_by(AdminRateLimitEvent.timestamp)
        ))

    def _info(self, count: int, reset: int | None = None) -> dict[str, Any]:
        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds if reset is None else reset,
            "limit": self.max_requests,
        }

    def check(self, admin_id: str) -> tuple[bool, dict[str, Any]]:
        """``(allowed, info)`` without recording anything."""
        now = datetime.now(UTC)
        with get_session(self.engine) as session:
            timestamps = self._window_timestamps(session, admin_id, now)

        if len(timestamps) < self.max_requests:
            return True, self._info(len(timestamps))

        expires = _aware(timestamps[0]) + timedelta(seconds=self.window_seconds)
        return False, self._info(len(timestamps), max(1, int((expires - now).total_seconds()) + 1))

    def record(self, admin_id: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        with get_session(self.engine) as session:
            count = len(self._window_timestamps(session, admin_id, now)) + 1
            session.add(AdminRateLimitEvent(admin_id=admin_id))
        return self._info(count)

    def reset(self, admin_id: str | None = None) -> None:
        """Forget one admin's window, or everyone's."""
        stmt = delete(AdminRateLimitEvent)
        if admin_id is not None:
            stmt = stmt.where(AdminRateLimitEvent.admin_id == admin_id)
        with get_session(self.engine) as session:
            session.execute(stmt)


# ---------------------------------------------------------------------------
# Process-wide limiter
# ---------------------------------------------------------------------------
_limiter: AdminRateLimiter | None = None


def configure_rate_limiter(*, engine: Engine) -> None:
    global _limiter
    _limiter = AdminRateLimiter(engine=engine)


def get_rate_limiter() -> AdminRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured; call configure_rate_limiter() first")
    return _limiter


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------
async def rate_limited_admin(
    request: Request,
    admin: dict = Depends(get_current_user),
) -> dict:
    """Authenticate the admin and count mutations against their window.

    Mounted router-wide, so reads pass straight through.
    """
    if request.method not in _MUTATION_METHODS:
        return admin

    limiter = get_rate_limiter()
    admin_id = admin["sub"]
    allowed, info = await asyncio.to_thread(limiter.check, admin_id)
    if not allowed:
        logger.warning(
            "Rate limit hit by admin %s (%d mutations / %ds)",
            admin_id, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded: {limiter.max_requests} mutations per minute.",
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, admin_id)
    return admin

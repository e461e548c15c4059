"""
cozycore.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn cozycore.api.main:app --reload --port 8000

Every response uses the envelope ``{"success": true, "data": ...}``; errors
are rendered by the handlers below as ``{"success": false, "error": "..."}``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from cozycore.api.auth import router as auth_router  # noqa: E402
from cozycore.api.deps import get_engine  # noqa: E402
from cozycore.api.rate_limit import configure_rate_limiter  # noqa: E402
from cozycore.api.routes.embeds import router as embeds_router  # noqa: E402
from cozycore.api.routes.guilds import router as guilds_router  # noqa: E402
from cozycore.api.routes.leaderboard import router as leaderboard_router  # noqa: E402
from cozycore.api.routes.level import router as level_router  # noqa: E402
from cozycore.api.routes.onboarding import router as onboarding_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    configure_rate_limiter(engine=engine)
    logger.info("CozyCore API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("CozyCore API shutting down")


app = FastAPI(
    title="CozyCore Dashboard API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------
def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return _error(400, message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal error")


# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(guilds_router, prefix="/api")
app.include_router(level_router, prefix="/api")
app.include_router(leaderboard_router, prefix="/api")
app.include_router(onboarding_router, prefix="/api")
app.include_router(embeds_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"success": True, "data": {"status": "ok"}}

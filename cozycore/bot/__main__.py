"""
cozycore.bot.__main__ — Entry point for ``python -m cozycore.bot``
===================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (poll intervals, timeouts).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the CozyBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m cozycore.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from cozycore.bot.core import CozyBot
from cozycore.config import load_config
from cozycore.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("discord.http").setLevel(logging.WARNING)
logger = logging.getLogger("cozycore")


def main() -> None:
    """Bootstrap and run the CozyCore bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info(
        "Config loaded — monthly poll %ds, onboarding cleanup every %d min",
        cfg.monthly_helper_poll_seconds, cfg.onboarding_cleanup_minutes,
    )

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Bot.
    bot = CozyBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting CozyCore bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()

"""
CozyCore — Community Leveling, Onboarding & Embeds for Discord
================================================================
A Discord bot that turns chat and forum support into XP and level roles,
greets newcomers in private onboarding threads, and publishes saved embed
messages, plus a FastAPI dashboard for guild administrators.

Package layout::

    cozycore/
    ├── config.py          # YAML → typed infrastructure config
    ├── constants.py       # Colours, defaults, permission bits
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── progression.py # Role resolver (pure)
    │   ├── gate.py        # Cooldown + similarity gate
    │   └── caps.py        # Hourly / daily cap buckets
    ├── services/
    │   ├── gateway.py         # GuildGateway capability protocol
    │   ├── notifier.py        # Template rendering, best-effort delivery
    │   ├── embeds.py          # Every bot embed builder
    │   ├── level_service.py   # XP award engine + ledger
    │   ├── level_config_service.py  # Level config / role CRUD
    │   ├── monthly_helper.py  # Monthly top-helper job
    │   ├── forum_service.py   # /close helper rewards
    │   ├── onboarding_service.py
    │   ├── embed_service.py   # Saved embed composer
    │   └── guild_service.py
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   ├── gateway.py     # discord.py GuildGateway adapter
    │   └── cogs/          # leveling, forum, onboarding, boosters, guilds, tasks
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Discord OAuth2 → JWT
        ├── discord_client.py  # Discord REST over httpx
        └── routes/        # Dashboard REST endpoints
"""

__version__ = "0.1.0"

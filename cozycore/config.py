"""
cozycore.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings: poll intervals,
UI timeouts and the bot prefix.  Everything a guild admin tunes (XP ranges,
caps, templates, onboarding messages) lives in the database and is edited
from the dashboard.

Usage::

    from cozycore.config import load_config

    cfg = load_config()                     # reads ./config.yaml by default
    print(cfg.monthly_helper_poll_seconds)  # 60
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# Per-guild tuning lives in the ``level_config`` / ``onboarding_config`` tables.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BotConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every key is optional; omitted keys keep the defaults below.
    """

    bot_prefix: str = "!"

    # Scheduled jobs
    monthly_helper_poll_seconds: int = 60
    onboarding_cleanup_minutes: int = 5

    # Forum /close flow
    helper_select_timeout_seconds: int = 60
    thread_close_delay_seconds: int = 2

    # Similarity gate
    message_history_size: int = 5

    # Dashboard
    dashboard_port: int = 8000


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> BotConfig:
    """Read *path* and return a :class:`BotConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value cannot be coerced to the field's type.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    values = {}
    for f in fields(BotConfig):
        if raw.get(f.name) is None:
            continue
        values[f.name] = str(raw[f.name]) if f.type == "str" else int(raw[f.name])
    return BotConfig(**values)

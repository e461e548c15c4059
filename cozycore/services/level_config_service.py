"""
cozycore.services.level_config_service — Level configuration & roles
=====================================================================

Dashboard-side reads and writes of ``level_config`` and ``level_roles``.
A guild without a config row is shown the column defaults; the first
update creates the row.

Invalid input raises ``ValueError`` and missing rows raise
:class:`LevelRoleNotFound`; routes map those to 400 / 404.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import Engine, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError

from cozycore.constants import SIMILARITY_SEVERITIES
from cozycore.database.engine import get_session
from cozycore.database.models import LevelConfig, LevelRole
from cozycore.engine.progression import RoleStep
from cozycore.services.level_service import load_role_steps

logger = logging.getLogger(__name__)

_SKIP_COLUMNS = frozenset({"created_at", "updated_at", "force_monthly_top_helper_run"})
_LIST_COLUMNS = frozenset(
    c.key for c in LevelConfig.__table__.columns if isinstance(c.type, JSONB)
)


class LevelRoleNotFound(LookupError):
    pass


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def _column_default(column) -> Any:
    default = column.default
    if default is None:
        return None
    if default.is_callable:
        return default.arg(None)
    return default.arg


def config_defaults(guild_id: str) -> dict[str, Any]:
    """Column defaults for a guild that has never saved a config."""
    values = {
        c.key: _column_default(c)
        for c in LevelConfig.__table__.columns
        if c.key not in _SKIP_COLUMNS
    }
    values["guild_id"] = guild_id
    return values


def _config_values(config: LevelConfig) -> dict[str, Any]:
    return {
        c.key: getattr(config, c.key)
        for c in LevelConfig.__table__.columns
        if c.key not in _SKIP_COLUMNS
    }


def serialize_config(config: LevelConfig | None, guild_id: str) -> dict[str, Any]:
    values = _config_values(config) if config is not None else config_defaults(guild_id)
    out = {}
    for key, value in values.items():
        if value is None and key in _LIST_COLUMNS:
            value = []
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        out[to_camel(key)] = value
    return out


_READ_ONLY = frozenset({
    "guild_id",
    "last_monthly_top_helper_run",
    "roles_embed_channel_id",
    "roles_embed_message_id",
})


def normalize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Turn a null list into ``[]``; reject null on any other NOT NULL column."""
    columns = LevelConfig.__table__.columns
    out = {}
    for key, value in changes.items():
        if key in _READ_ONLY or key in _SKIP_COLUMNS or key not in columns:
            continue
        if value is None and not columns[key].nullable:
            if not isinstance(columns[key].type, JSONB):
                raise ValueError(f"{to_camel(key)} must not be null")
            value = []
        out[key] = value
    return out


def serialize_role(role: LevelRole) -> dict[str, Any]:
    return {
        "id": role.id,
        "guildId": role.guild_id,
        "roleId": role.role_id,
        "xpRequired": role.xp_required,
        "order": role.order,
    }


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
def get_config_with_roles(engine: Engine, guild_id: str) -> dict[str, Any]:
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        roles = session.scalars(
            select(LevelRole)
            .where(LevelRole.guild_id == guild_id)
            .order_by(LevelRole.xp_required, LevelRole.order)
        ).all()
        return {
            "config": serialize_config(config, guild_id),
            "roles": [serialize_role(r) for r in roles],
        }


def validate_config(values: dict[str, Any]) -> None:
    """Raise ``ValueError`` if the merged config breaks an invariant."""
    if values["min_xp_per_message"] > values["max_xp_per_message"]:
        raise ValueError("minXpPerMessage must not exceed maxXpPerMessage")
    if values["similarity_severity"] not in SIMILARITY_SEVERITIES:
        raise ValueError(
            "similaritySeverity must be one of " + ", ".join(SIMILARITY_SEVERITIES)
        )
    if not 1 <= values["monthly_top_helper_day"] <= 28:
        raise ValueError("monthlyTopHelperDay must be between 1 and 28")
    if not 0 <= values["monthly_top_helper_hour"] <= 23:
        raise ValueError("monthlyTopHelperHour must be between 0 and 23")


def update_config(engine: Engine, guild_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    """Apply a partial update, creating the row from defaults when absent."""
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        merged = _config_values(config) if config is not None else config_defaults(guild_id)
        changes = normalize_changes(changes)
        merged.update(changes)
        validate_config(merged)

        if config is None:
            config = LevelConfig(**merged)
            session.add(config)
        else:
            for key, value in changes.items():
                setattr(config, key, value)
        session.flush()
        logger.info("Level config updated for guild %s (%s)", guild_id, ", ".join(changes))
        return serialize_config(config, guild_id)


def set_roles_embed_reference(
    engine: Engine, guild_id: str, channel_id: str | None, message_id: str | None
) -> None:
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        if config is None:
            raise LookupError("Level config not found")
        config.roles_embed_channel_id = channel_id
        config.roles_embed_message_id = message_id


def load_roles_embed_source(engine: Engine, guild_id: str) -> tuple[LevelConfig, list[RoleStep]]:
    """Config and roles for building the roles overview embed."""
    with get_session(engine) as session:
        config = session.get(LevelConfig, guild_id)
        if config is None:
            raise LookupError("Level config not found")
        return config, load_role_steps(session, guild_id)


# ---------------------------------------------------------------------------
# Level roles
# ---------------------------------------------------------------------------
def create_role(
    engine: Engine, guild_id: str, role_id: str | None, xp_required: int | None = None
) -> dict[str, Any]:
    if not role_id:
        raise ValueError("Role ID is required")
    xp = 100 if xp_required is None else xp_required
    if xp < 0:
        raise ValueError("xpRequired must not be negative")

    with get_session(engine) as session:
        duplicate = session.scalar(
            select(LevelRole.id).where(
                LevelRole.guild_id == guild_id, LevelRole.role_id == role_id
            )
        )
        if duplicate is not None:
            raise ValueError("This role is already a level role")
        max_order = session.scalar(
            select(func.max(LevelRole.order)).where(LevelRole.guild_id == guild_id)
        )
        role = LevelRole(
            guild_id=guild_id,
            role_id=role_id,
            xp_required=xp,
            order=(max_order + 1) if max_order is not None else 0,
        )
        session.add(role)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ValueError("This role is already a level role") from exc
        logger.info("Level role %s added in guild %s at %d XP", role_id, guild_id, xp)
        return serialize_role(role)


def update_role(
    engine: Engine, guild_id: str, level_role_id: str, changes: dict[str, Any]
) -> dict[str, Any]:
    if changes.get("xp_required") is not None and changes["xp_required"] < 0:
        raise ValueError("xpRequired must not be negative")
    with get_session(engine) as session:
        role = session.get(LevelRole, level_role_id)
        if role is None or role.guild_id != guild_id:
            raise LevelRoleNotFound("Level role not found")
        for key, value in changes.items():
            if value is not None:
                setattr(role, key, value)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ValueError("This role is already a level role") from exc
        return serialize_role(role)


def delete_role(engine: Engine, guild_id: str, level_role_id: str) -> None:
    with get_session(engine) as session:
        role = session.get(LevelRole, level_role_id)
        if role is None or role.guild_id != guild_id:
            raise LevelRoleNotFound("Level role not found")
        session.delete(role)
    logger.info("Level role %s removed in guild %s", level_role_id, guild_id)

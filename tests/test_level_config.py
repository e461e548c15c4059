"""
tests/test_level_config.py — Level Config & Level Role Tests
=============================================================
"""

from __future__ import annotations

import pytest
from conftest import GUILD_ID, add_guild, add_level_config, add_level_roles

from cozycore.database.models import LevelConfig
from cozycore.services.level_config_service import (
    LevelRoleNotFound,
    config_defaults,
    create_role,
    delete_role,
    get_config_with_roles,
    load_roles_embed_source,
    normalize_changes,
    serialize_config,
    set_roles_embed_reference,
    update_config,
    update_role,
    validate_config,
)


# ===========================================================================
# Serialization
# ===========================================================================
class TestSerialization:
    def test_defaults(self):
        defaults = config_defaults(GUILD_ID)
        assert defaults["guild_id"] == GUILD_ID
        assert defaults["enabled"] is False
        assert defaults["min_xp_per_message"] <= defaults["max_xp_per_message"]
        assert defaults["whitelisted_channels"] == []
        assert "created_at" not in defaults

    def test_camel_case_keys(self):
        data = serialize_config(None, GUILD_ID)
        assert data["guildId"] == GUILD_ID
        assert "minXpPerMessage" in data
        assert "monthlyTopHelperDay" in data
        assert "min_xp_per_message" not in data
        assert "forceMonthlyTopHelperRun" not in data

    def test_null_lists_serialize_empty(self):
        config = LevelConfig(
            guild_id=GUILD_ID, whitelisted_channels=None, booster_embed_descriptions=None,
        )
        data = serialize_config(config, GUILD_ID)
        assert data["whitelistedChannels"] == []
        assert data["boosterEmbedDescriptions"] == []


class TestNormalizeChanges:
    def test_drops_read_only_and_unknown(self):
        changes = normalize_changes({
            "min_xp_per_message": 3,
            "log_channel_id": "55",
            "guild_id": "999",
            "roles_embed_message_id": "1",
            "last_monthly_top_helper_run": None,
            "something_else": True,
        })
        assert changes == {"min_xp_per_message": 3, "log_channel_id": "55"}

    def test_null_list_becomes_empty(self):
        changes = normalize_changes({"whitelisted_channels": None, "whitelisted_forums": None})
        assert changes == {"whitelisted_channels": [], "whitelisted_forums": []}

    def test_nullable_column_accepts_null(self):
        assert normalize_changes({"log_channel_id": None, "max_xp_per_hour": None}) == {
            "log_channel_id": None, "max_xp_per_hour": None,
        }

    @pytest.mark.parametrize("key", ["min_xp_per_message", "enabled", "promotion_embed_title"])
    def test_rejects_null_on_required_column(self, key):
        with pytest.raises(ValueError, match="must not be null"):
            normalize_changes({key: None})


# ===========================================================================
# Validation
# ===========================================================================
class TestValidation:
    def _values(self, **overrides):
        values = config_defaults(GUILD_ID)
        values.update(overrides)
        return values

    def test_defaults_are_valid(self):
        validate_config(self._values())

    def test_min_above_max(self):
        with pytest.raises(ValueError, match="minXpPerMessage must not exceed maxXpPerMessage"):
            validate_config(self._values(min_xp_per_message=20, max_xp_per_message=10))

    def test_severity(self):
        with pytest.raises(ValueError, match="similaritySeverity"):
            validate_config(self._values(similarity_severity="extreme"))

    @pytest.mark.parametrize("day", [0, 29])
    def test_day_range(self, day):
        with pytest.raises(ValueError, match="monthlyTopHelperDay must be between 1 and 28"):
            validate_config(self._values(monthly_top_helper_day=day))

    def test_hour_range(self):
        with pytest.raises(ValueError, match="monthlyTopHelperHour"):
            validate_config(self._values(monthly_top_helper_hour=24))


# ===========================================================================
# Config reads and writes
# ===========================================================================
class TestConfig:
    def test_unconfigured_guild_sees_defaults(self, db_engine):
        data = get_config_with_roles(db_engine, GUILD_ID)
        assert data["config"] == serialize_config(None, GUILD_ID)
        assert data["roles"] == []

    def test_first_update_creates_row(self, db_engine):
        add_guild(db_engine)
        config = update_config(db_engine, GUILD_ID, {"enabled": True, "cooldown_seconds": 30})
        assert config["enabled"] is True
        assert config["cooldownSeconds"] == 30
        assert get_config_with_roles(db_engine, GUILD_ID)["config"]["cooldownSeconds"] == 30

    def test_partial_update_keeps_other_fields(self, db_engine):
        add_level_config(db_engine, cooldown_seconds=45)
        config = update_config(db_engine, GUILD_ID, {"min_message_length": 2})
        assert config["cooldownSeconds"] == 45
        assert config["minMessageLength"] == 2

    def test_invalid_update_leaves_row_untouched(self, db_engine):
        add_level_config(db_engine, min_xp_per_message=5, max_xp_per_message=10)
        with pytest.raises(ValueError):
            update_config(db_engine, GUILD_ID, {"min_xp_per_message": 50})
        config = get_config_with_roles(db_engine, GUILD_ID)["config"]
        assert config["minXpPerMessage"] == 5

    def test_update_is_checked_against_stored_values(self, db_engine):
        add_level_config(db_engine, min_xp_per_message=5, max_xp_per_message=10)
        with pytest.raises(ValueError, match="must not exceed"):
            update_config(db_engine, GUILD_ID, {"max_xp_per_message": 4})

    def test_roles_embed_reference(self, db_engine):
        add_level_config(db_engine)
        add_level_roles(db_engine, ("r1", 100), ("r2", 500))
        set_roles_embed_reference(db_engine, GUILD_ID, "chan", "msg")

        config, roles = load_roles_embed_source(db_engine, GUILD_ID)
        assert (config.roles_embed_channel_id, config.roles_embed_message_id) == ("chan", "msg")
        assert [r.role_id for r in roles] == ["r1", "r2"]

    def test_roles_embed_without_config(self, db_engine):
        with pytest.raises(LookupError):
            load_roles_embed_source(db_engine, GUILD_ID)
        with pytest.raises(LookupError):
            set_roles_embed_reference(db_engine, GUILD_ID, "c", "m")


# ===========================================================================
# Level roles
# ===========================================================================
class TestLevelRoles:
    def test_create_defaults_and_order(self, db_engine):
        add_guild(db_engine)
        first = create_role(db_engine, GUILD_ID, "r1")
        second = create_role(db_engine, GUILD_ID, "r2", 500)
        assert first["xpRequired"] == 100
        assert (first["order"], second["order"]) == (0, 1)

    def test_role_id_required(self, db_engine):
        with pytest.raises(ValueError, match="Role ID is required"):
            create_role(db_engine, GUILD_ID, "")

    def test_negative_threshold(self, db_engine):
        with pytest.raises(ValueError, match="xpRequired"):
            create_role(db_engine, GUILD_ID, "r1", -5)

    def test_duplicate(self, db_engine):
        add_guild(db_engine)
        create_role(db_engine, GUILD_ID, "r1")
        with pytest.raises(ValueError, match="already a level role"):
            create_role(db_engine, GUILD_ID, "r1", 900)

    def test_same_role_in_another_guild_is_fine(self, db_engine):
        add_guild(db_engine)
        add_guild(db_engine, "200", "Elsewhere")
        create_role(db_engine, GUILD_ID, "r1")
        assert create_role(db_engine, "200", "r1")["guildId"] == "200"

    def test_roles_listed_by_threshold(self, db_engine):
        add_guild(db_engine)
        create_role(db_engine, GUILD_ID, "high", 5000)
        create_role(db_engine, GUILD_ID, "low", 10)
        roles = get_config_with_roles(db_engine, GUILD_ID)["roles"]
        assert [r["roleId"] for r in roles] == ["low", "high"]

    def test_update(self, db_engine):
        add_guild(db_engine)
        role = create_role(db_engine, GUILD_ID, "r1")
        updated = update_role(db_engine, GUILD_ID, role["id"], {"xp_required": 250, "order": None})
        assert updated["xpRequired"] == 250
        assert updated["order"] == 0

    def test_update_and_delete_other_guild(self, db_engine):
        add_guild(db_engine)
        add_guild(db_engine, "200", "Elsewhere")
        theirs = create_role(db_engine, "200", "r1")
        with pytest.raises(LevelRoleNotFound, match="Level role not found"):
            update_role(db_engine, GUILD_ID, theirs["id"], {"xp_required": 1})
        with pytest.raises(LevelRoleNotFound):
            delete_role(db_engine, GUILD_ID, theirs["id"])

    def test_delete(self, db_engine):
        add_guild(db_engine)
        role = create_role(db_engine, GUILD_ID, "r1")
        delete_role(db_engine, GUILD_ID, role["id"])
        assert get_config_with_roles(db_engine, GUILD_ID)["roles"] == []

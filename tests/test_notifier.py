"""
tests/test_notifier.py — Template & Embed Builder Tests
========================================================
"""

from __future__ import annotations

import random
from types import SimpleNamespace

from conftest import FakeGateway, run_async

from cozycore.constants import BOOST_PINK, FALLBACK_ROLE_TEMPLATE, LOG_EMBED_TITLE, PASTEL_COLORS
from cozycore.engine.progression import RoleResolution, RoleStep, TransitionKind
from cozycore.services.embeds import (
    build_adjust_log_embed,
    build_booster_embed,
    build_log_embed,
    build_monthly_embed,
    build_role_embed,
    build_roles_embed,
)
from cozycore.services.notifier import (
    deliver,
    notify,
    pick_template,
    random_pastel,
    render_template,
    role_mention,
    user_mention,
)


def _level_config(**overrides) -> SimpleNamespace:
    values = {
        "promotion_embed_title": "Level Up!",
        "promotion_embed_description": "{user} earned {role}",
        "promotion_embed_descriptions": [],
        "demotion_embed_title": "Role Change",
        "demotion_embed_description": "{user} moved from {oldRole} to {newRole}",
        "demotion_embed_descriptions": [],
        "role_loss_embed_title": "Role Removed",
        "role_loss_embed_description": "{user} lost {role}",
        "role_loss_embed_descriptions": [],
        "booster_embed_title": "Thanks!",
        "booster_embed_description": "{user}: {multiplier} / +{bonusXp} / {helperBonus}",
        "booster_embed_descriptions": [],
        "booster_xp_multiplier": 1.5,
        "booster_bonus_xp_per_message": 5,
        "booster_helper_bonus_multiplier": 2.0,
        "monthly_top_helper_embed_title": "Monthly MVP",
        "monthly_top_helper_embed_description": (
            "{month}: {first} ({count1}) +{firstXp}, {second} ({count2}) +{secondXp}, "
            "{third} ({count3}) +{thirdXp}"
        ),
        "monthly_top_helper_embed_descriptions": [],
        "roles_embed_title": "Level Roles",
        "roles_embed_description": "Earn XP to unlock these roles!",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


# ===========================================================================
# Templates
# ===========================================================================
class TestPickTemplate:
    def test_no_alternates_returns_main(self):
        assert pick_template("main", []) == "main"
        assert pick_template("main", None) == "main"

    def test_blank_alternates_are_ignored(self):
        assert pick_template("main", ["", "   "]) == "main"

    def test_empty_main_without_alternates_falls_back(self):
        assert pick_template("", []) == FALLBACK_ROLE_TEMPLATE
        assert pick_template(None, ["  "]) == FALLBACK_ROLE_TEMPLATE

    def test_picks_among_main_and_alternates(self):
        rng = random.Random(7)
        seen = {pick_template("main", ["alt one", "", "alt two"], rng) for _ in range(200)}
        assert seen == {"main", "alt one", "alt two"}


class TestRenderTemplate:
    def test_literal_substitution(self):
        assert render_template("{user} got {role}", {"user": "<@1>", "role": "<@&2>"}) == "<@1> got <@&2>"

    def test_repeated_placeholder(self):
        assert render_template("{x}{x}", {"x": 1}) == "11"

    def test_unknown_placeholder_left_verbatim(self):
        assert render_template("{user} and {mystery}", {"user": "a"}) == "a and {mystery}"


def test_mentions():
    assert user_mention(42) == "<@42>"
    assert role_mention("7") == "<@&7>"
    assert role_mention(None) == "none"
    assert role_mention(None, missing="N/A") == "N/A"


def test_random_pastel_is_from_palette():
    rng = random.Random(1)
    assert all(random_pastel(rng) in PASTEL_COLORS for _ in range(50))


# ===========================================================================
# Embed builders
# ===========================================================================
class TestLogEmbeds:
    def test_automatic_award(self):
        embed = build_log_embed("5", 8, 10, 18, "message")
        assert embed.title == LOG_EMBED_TITLE
        assert "<@5>" in embed.description
        assert "+8 XP" in embed.description
        assert "via message" in embed.description
        assert "(10 → 18)" in embed.description

    def test_dashboard_adjustment_lines(self):
        resolution = RoleResolution(RoleStep("r2", 100), None, TransitionKind.PROMOTION)
        embed = build_adjust_log_embed(
            "5", 150, 0, 150,
            admin_name="Mod", reason="event prize", resolution=resolution, role_changed=True,
        )
        assert "150 XP** added via dashboard" in embed.description
        assert "**Reason:** event prize" in embed.description
        assert "**Role assigned:** <@&r2>" in embed.description
        assert embed.description.endswith("**Admin:** Mod")

    def test_dashboard_removal_without_role_change(self):
        embed = build_adjust_log_embed("5", -20, 30, 10, admin_name="Mod")
        assert "20 XP** removed" in embed.description
        assert "Reason" not in embed.description
        assert "Role" not in embed.description


class TestRoleEmbed:
    def test_promotion(self):
        resolution = RoleResolution(RoleStep("r2", 100), "r1", TransitionKind.PROMOTION)
        embed = build_role_embed(_level_config(), resolution, "9")
        assert embed.title == "Level Up!"
        assert embed.description == "<@9> earned <@&r2>"
        assert embed.color.value in PASTEL_COLORS

    def test_demotion_names_both_roles(self):
        resolution = RoleResolution(RoleStep("r1", 10), "r2", TransitionKind.DEMOTION)
        embed = build_role_embed(_level_config(), resolution, "9")
        assert embed.title == "Role Change"
        assert embed.description == "<@9> moved from <@&r2> to <@&r1>"

    def test_role_loss_role_is_the_lost_role(self):
        resolution = RoleResolution(None, "r1", TransitionKind.ROLE_LOSS)
        embed = build_role_embed(_level_config(), resolution, "9")
        assert embed.title == "Role Removed"
        assert embed.description == "<@9> lost <@&r1>"

    def test_blank_title_omitted(self):
        resolution = RoleResolution(RoleStep("r2", 100), None, TransitionKind.PROMOTION)
        embed = build_role_embed(_level_config(promotion_embed_title=""), resolution, "9")
        assert embed.title is None

    def test_author_from_member(self):
        from cozycore.services.gateway import MemberProfile

        resolution = RoleResolution(RoleStep("r2", 100), None, TransitionKind.PROMOTION)
        member = MemberProfile("9", "Nova", "https://cdn.example/a.png")
        embed = build_role_embed(_level_config(), resolution, "9", member)
        assert embed.author.name == "Nova"


def test_booster_embed_formats_multipliers():
    embed = build_booster_embed(_level_config(), "3")
    assert embed.description == "<@3>: 1.5x / +5 / 2x"
    assert embed.color.value == BOOST_PINK


class TestMonthlyEmbed:
    def test_three_helpers(self):
        embed = build_monthly_embed(
            _level_config(), [("1", 9), ("2", 5), ("3", 2)], [250, 150, 100], "March",
        )
        assert embed.description == (
            "March: <@1> (9) +250, <@2> (5) +150, <@3> (2) +100"
        )

    def test_missing_places_are_na(self):
        embed = build_monthly_embed(_level_config(), [("1", 4)], [250, 150, 100], "May")
        assert "<@1> (4) +250" in embed.description
        assert "N/A (0) +150" in embed.description
        assert "N/A (0) +100" in embed.description

    def test_legacy_aliases(self):
        config = _level_config(monthly_top_helper_embed_description="{user1} {xp2} {count3}")
        embed = build_monthly_embed(config, [("1", 4), ("2", 3), ("3", 1)], [9, 8, 7], "May")
        assert embed.description == "<@1> 8 1"


class TestRolesEmbed:
    def test_highest_threshold_first(self):
        roles = [RoleStep("low", 100), RoleStep("high", 5000), RoleStep("mid", 1000)]
        embed = build_roles_embed(_level_config(), roles)
        body = embed.description
        assert body.startswith("Earn XP to unlock these roles!")
        assert body.index("<@&high>") < body.index("<@&mid>") < body.index("<@&low>")
        assert "**5,000 XP**" in body
        assert embed.footer.text == "3 level roles • Updated"

    def test_single_role_footer(self):
        embed = build_roles_embed(_level_config(), [RoleStep("only", 10)])
        assert embed.footer.text == "1 level role • Updated"


# ===========================================================================
# Delivery
# ===========================================================================
class TestDelivery:
    def test_deliver_sends(self):
        gateway = FakeGateway()
        embed = build_log_embed("5", 1, 0, 1, "message")
        assert run_async(deliver(gateway, "log", embed)) is True
        assert gateway.sent_to("log") == [embed]

    def test_deliver_without_channel(self):
        gateway = FakeGateway()
        assert run_async(deliver(gateway, None, build_log_embed("5", 1, 0, 1, "message"))) is False
        assert gateway.sent == []

    def test_deliver_swallows_missing_channel(self):
        gateway = FakeGateway()
        gateway.unavailable_channels.add("gone")
        assert run_async(deliver(gateway, "gone", build_log_embed("5", 1, 0, 1, "message"))) is False

    def test_deliver_swallows_unexpected_errors(self):
        class Exploding(FakeGateway):
            async def send_embed(self, channel_id, embed):
                raise RuntimeError("boom")

        assert run_async(deliver(Exploding(), "log", build_log_embed("5", 1, 0, 1, "message"))) is False

    def test_notify_returns_awaitable_task(self):
        gateway = FakeGateway()

        async def _inner():
            task = notify(gateway, "log", build_log_embed("5", 1, 0, 1, "message"))
            return await task

        assert run_async(_inner()) is True
        assert len(gateway.sent) == 1

"""
tests/test_cogs.py — Bot Cog Tests
===================================
Cogs are driven directly with mocked discord objects; the database side
runs against the in-memory engine.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from conftest import (
    GUILD_ID,
    add_guild,
    add_level_config,
    add_level_roles,
    add_member,
    run_async,
)

from cozycore.bot.cogs.boosters import Boosters, started_boosting
from cozycore.bot.cogs.forum import Forum, HelperPickView
from cozycore.bot.cogs.guilds import Guilds, snapshot_of
from cozycore.bot.cogs.leveling import Leveling
from cozycore.bot.cogs.onboarding import Onboarding, _menu_role_ids, role_select_view
from cozycore.bot.cogs.tasks import THREAD_DELETE_REASON, PeriodicTasks
from cozycore.bot.gateway import DiscordGuildGateway
from cozycore.config import BotConfig
from cozycore.constants import ONBOARDING_SELECT_PREFIX, PASTEL_COLORS
from cozycore.engine.gate import XpGate
from cozycore.services.gateway import ChannelUnavailable
from cozycore.services.guild_service import get_guild, is_installed
from cozycore.services.level_service import get_member
from cozycore.services.onboarding_service import (
    create_message,
    expired_threads,
    record_thread,
    update_onboarding,
)


def _not_found() -> discord.NotFound:
    return discord.NotFound(MagicMock(status=404, reason="Not Found"), "gone")


def _bot(engine, **cfg) -> MagicMock:
    bot = MagicMock()
    bot.engine = engine
    bot.cfg = BotConfig(**cfg)
    return bot


def _member_mock(user_id: int = 42, roles: list | None = None) -> MagicMock:
    member = MagicMock(spec=discord.Member)
    member.id = user_id
    member.name = f"user{user_id}"
    member.display_name = f"User {user_id}"
    member.display_avatar = SimpleNamespace(url=f"https://cdn.example/{user_id}.png")
    member.roles = roles or []
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    return member


def _guild_mock(guild_id: int = int(GUILD_ID), member: MagicMock | None = None) -> MagicMock:
    guild = MagicMock()
    guild.id = guild_id
    guild.name = "Cozy Corner"
    guild.member_count = 128
    guild.get_member.return_value = member
    guild.fetch_member = AsyncMock(side_effect=_not_found())
    return guild


def _text_channel() -> MagicMock:
    channel = MagicMock(spec=discord.TextChannel)
    channel.send = AsyncMock(return_value=SimpleNamespace(id=555))
    return channel


# ===========================================================================
# Gateway
# ===========================================================================
class TestDiscordGuildGateway:
    def test_cached_member_profile(self):
        member = _member_mock(roles=[SimpleNamespace(id=7)])
        gateway = DiscordGuildGateway(_guild_mock(member=member))

        profile = run_async(gateway.fetch_member("42"))

        assert profile.display_name == "User 42"
        assert profile.role_ids == frozenset({"7"})

    def test_departed_member(self):
        gateway = DiscordGuildGateway(_guild_mock(member=None))
        assert run_async(gateway.fetch_member("42")) is None
        with pytest.raises(LookupError):
            run_async(gateway.add_role("42", "5"))

    def test_add_role_uses_object_reference(self):
        member = _member_mock()
        gateway = DiscordGuildGateway(_guild_mock(member=member))

        run_async(gateway.add_role("42", "5"))

        [role], kwargs = member.add_roles.await_args
        assert role.id == 5
        assert kwargs["reason"] == "Level role"

    def test_send_embed(self):
        guild = _guild_mock()
        channel = _text_channel()
        guild.get_channel_or_thread.return_value = channel

        assert run_async(DiscordGuildGateway(guild).send_embed("10", discord.Embed())) == "555"
        guild.get_channel_or_thread.assert_called_once_with(10)

    def test_send_embed_missing_channel(self):
        guild = _guild_mock()
        guild.get_channel_or_thread.return_value = None
        guild.fetch_channel = AsyncMock(side_effect=_not_found())

        with pytest.raises(ChannelUnavailable):
            run_async(DiscordGuildGateway(guild).send_embed("10", discord.Embed()))

    def test_send_embed_to_category_rejected(self):
        guild = _guild_mock()
        guild.get_channel_or_thread.return_value = MagicMock(spec=discord.CategoryChannel)

        with pytest.raises(ChannelUnavailable):
            run_async(DiscordGuildGateway(guild).send_embed("10", discord.Embed()))


# ===========================================================================
# Leveling
# ===========================================================================
def _message(guild, content: str = "hello there everyone", *, bot: bool = False):
    return SimpleNamespace(
        id=1,
        author=SimpleNamespace(id=42, bot=bot),
        guild=guild,
        channel=SimpleNamespace(id=7),
        content=content,
    )


class TestLeveling:
    def _cog(self, engine):
        return Leveling(_bot(engine), gate=XpGate())

    def test_awards_within_bounds_then_cooldown(self, db_engine):
        add_level_config(db_engine, min_xp_per_message=4, max_xp_per_message=10)
        cog = self._cog(db_engine)
        guild = _guild_mock(member=_member_mock())

        amount = run_async(cog.handle_message(_message(guild)))

        assert 4 <= amount <= 10
        member = get_member(db_engine, GUILD_ID, "42")
        assert member.total_xp == amount
        assert member.xp_earned_this_hour == amount
        assert run_async(cog.handle_message(_message(guild, "something else entirely"))) is None

    def test_ignores_bots_and_dms(self, db_engine):
        add_level_config(db_engine)
        cog = self._cog(db_engine)
        assert run_async(cog.handle_message(_message(_guild_mock(), bot=True))) is None
        assert run_async(cog.handle_message(_message(None))) is None

    def test_disabled_config(self, db_engine):
        add_level_config(db_engine, enabled=False)
        assert run_async(self._cog(db_engine).handle_message(_message(_guild_mock()))) is None
        assert get_member(db_engine, GUILD_ID, "42") is None

    def test_short_message(self, db_engine):
        add_level_config(db_engine, min_message_length=50)
        assert run_async(self._cog(db_engine).handle_message(_message(_guild_mock()))) is None

    def test_hourly_cap(self, db_engine):
        add_level_config(db_engine, max_xp_per_hour=0, max_xp_per_hour_enabled=True)
        assert run_async(self._cog(db_engine).handle_message(_message(_guild_mock()))) is None

    def test_promotion_assigns_role(self, db_engine):
        add_level_config(db_engine)
        add_level_roles(db_engine, ("5", 0))
        member = _member_mock()

        run_async(self._cog(db_engine).handle_message(_message(_guild_mock(member=member))))

        [role], _ = member.add_roles.await_args
        assert role.id == 5
        assert get_member(db_engine, GUILD_ID, "42").current_role_id == "5"

    def test_crossing_first_threshold_end_to_end(self, db_engine):
        add_level_config(
            db_engine, min_xp_per_message=4, max_xp_per_message=4, cooldown_seconds=60,
            congrats_channel_id="900",
        )
        add_level_roles(db_engine, ("301", 100), ("302", 200))
        add_member(db_engine, "42", total_xp=98)
        member = _member_mock()
        guild = _guild_mock(member=member)
        congrats = _text_channel()
        guild.get_channel_or_thread.return_value = congrats
        cog = self._cog(db_engine)

        async def _chat():
            first = await cog.handle_message(_message(guild))
            second = await cog.handle_message(_message(guild, "a different message entirely"))
            await asyncio.gather(*(asyncio.all_tasks() - {asyncio.current_task()}))
            return first, second

        assert run_async(_chat()) == (4, None)

        row = get_member(db_engine, GUILD_ID, "42")
        assert (row.total_xp, row.current_role_id) == (102, "301")
        [role], _ = member.add_roles.await_args
        assert role.id == 301
        member.remove_roles.assert_not_awaited()
        guild.get_channel_or_thread.assert_called_with(900)
        embed = congrats.send.await_args.kwargs["embed"]
        assert "<@&301>" in embed.description


# ===========================================================================
# Boosters
# ===========================================================================
class TestBoosters:
    def test_started_boosting(self):
        now = datetime.now(UTC)
        assert started_boosting(SimpleNamespace(premium_since=None), SimpleNamespace(premium_since=now))
        assert not started_boosting(SimpleNamespace(premium_since=now), SimpleNamespace(premium_since=now))
        assert not started_boosting(SimpleNamespace(premium_since=None), SimpleNamespace(premium_since=None))

    def _booster(self):
        guild = _guild_mock()
        channel = _text_channel()
        guild.get_channel_or_thread.return_value = channel
        member = _member_mock(user_id=3)
        member.guild = guild
        return member, channel

    def test_thanks_booster(self, db_engine):
        add_level_config(db_engine, booster_enabled=True, booster_channel_id="10")
        member, channel = self._booster()

        assert run_async(Boosters(_bot(db_engine)).thank_booster(member)) is True

        embed = channel.send.await_args.kwargs["embed"]
        assert "<@3>" in embed.description
        assert embed.author.name == "User 3"

    def test_disabled_or_no_channel(self, db_engine):
        add_level_config(db_engine, booster_enabled=True, booster_channel_id=None)
        member, channel = self._booster()

        assert run_async(Boosters(_bot(db_engine)).thank_booster(member)) is False
        channel.send.assert_not_awaited()


# ===========================================================================
# Guild registry
# ===========================================================================
def _discord_guild(guild_id: int, name: str = "Cozy Corner"):
    return SimpleNamespace(
        id=guild_id,
        name=name,
        owner_id=1,
        icon=SimpleNamespace(key="abc"),
        me=SimpleNamespace(joined_at=datetime(2026, 1, 1, tzinfo=UTC)),
    )


class TestGuilds:
    def test_snapshot(self):
        snapshot = snapshot_of(_discord_guild(100))
        assert (snapshot.id, snapshot.owner_id, snapshot.icon) == ("100", "1", "abc")

    def test_snapshot_without_icon(self):
        guild = _discord_guild(100)
        guild.icon = None
        guild.me = None
        snapshot = snapshot_of(guild)
        assert snapshot.icon is None
        assert snapshot.joined_at is None

    def test_ready_join_and_remove(self, db_engine):
        bot = _bot(db_engine)
        bot.guilds = [_discord_guild(100), _discord_guild(200, "Other")]
        cog = Guilds(bot)

        run_async(cog.on_ready())
        assert is_installed(db_engine, "100")
        assert is_installed(db_engine, "200")

        run_async(cog.on_guild_join(_discord_guild(300, "New")))
        assert get_guild(db_engine, "300").name == "New"

        run_async(cog.on_guild_remove(_discord_guild(200)))
        assert not is_installed(db_engine, "200")


# ===========================================================================
# Periodic tasks
# ===========================================================================
class TestThreadCleanup:
    NOW = datetime(2026, 5, 10, tzinfo=UTC)

    def test_deletes_expired_threads(self, db_engine):
        add_guild(db_engine)
        record_thread(db_engine, GUILD_ID, "1", "901", "1d", self.NOW - timedelta(days=2))
        record_thread(db_engine, GUILD_ID, "2", "902", "1d", self.NOW - timedelta(days=2))
        record_thread(db_engine, GUILD_ID, "3", "903", "7d", self.NOW)

        thread = MagicMock(spec=discord.Thread)
        thread.delete = AsyncMock()
        guild = _guild_mock()
        guild.get_thread.side_effect = lambda tid: thread if tid == 901 else None
        guild.fetch_channel = AsyncMock(side_effect=_not_found())
        bot = _bot(db_engine)
        bot.get_guild.return_value = guild

        deleted = run_async(PeriodicTasks(bot).cleanup_expired_threads(self.NOW))

        assert deleted == 2
        thread.delete.assert_awaited_once_with(reason=THREAD_DELETE_REASON)
        assert expired_threads(db_engine, self.NOW + timedelta(days=30)) == [(GUILD_ID, "903")]

    def test_guild_gone_still_forgets_records(self, db_engine):
        add_guild(db_engine)
        record_thread(db_engine, GUILD_ID, "1", "901", "1d", self.NOW - timedelta(days=2))
        bot = _bot(db_engine)
        bot.get_guild.return_value = None

        assert run_async(PeriodicTasks(bot).cleanup_expired_threads(self.NOW)) == 1
        assert expired_threads(db_engine, self.NOW) == []


# ===========================================================================
# Forum /close
# ===========================================================================
class _History:
    def __init__(self, messages):
        self._messages = list(messages)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)


def _post(user_id: int, name: str, bot: bool = False):
    return SimpleNamespace(author=SimpleNamespace(id=user_id, name=name, bot=bot))


def _thread(posts) -> MagicMock:
    thread = MagicMock()
    thread.id = 900
    thread.name = "How do I center a div?"
    thread.owner_id = 1
    thread.guild = _guild_mock(member=_member_mock(user_id=1))
    thread.history = lambda limit=100: _History(posts)
    thread.edit = AsyncMock()
    return thread


def _interaction() -> SimpleNamespace:
    return SimpleNamespace(
        user=SimpleNamespace(id=1),
        followup=SimpleNamespace(send=AsyncMock(return_value=MagicMock())),
    )


class TestForumClose:
    def _cog(self, engine):
        return Forum(_bot(engine, thread_close_delay_seconds=0))

    def _config(self, engine, **overrides):
        from cozycore.services.level_service import load_level_config

        add_level_config(engine, forum_xp_enabled=True, **overrides)
        return load_level_config(engine, GUILD_ID)

    def test_no_participants_closes_without_xp(self, db_engine):
        config = self._config(db_engine)
        thread = _thread([_post(1, "asker"), _post(99, "CozyCore", bot=True)])
        interaction = _interaction()

        run_async(self._cog(db_engine)._reward_close(interaction, thread, config))

        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert "No XP awarded" in embed.description
        assert embed.color.value in PASTEL_COLORS
        thread.edit.assert_awaited_once_with(locked=True, archived=True)
        assert get_member(db_engine, GUILD_ID, "1") is None

    def test_owner_rewarded_without_helper_bonus(self, db_engine):
        config = self._config(db_engine, helper_bonus_xp=0, xp_on_thread_close=25)
        thread = _thread([_post(2, "helper"), _post(1, "asker")])
        interaction = _interaction()

        run_async(self._cog(db_engine)._reward_close(interaction, thread, config))

        assert get_member(db_engine, GUILD_ID, "1").total_xp == 25
        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert "**25 XP**" in embed.description
        thread.edit.assert_awaited_once()

    def test_helper_picker_offered(self, db_engine):
        config = self._config(db_engine, helper_bonus_xp=15)
        thread = _thread([_post(2, "helper"), _post(3, "another"), _post(2, "helper")])
        interaction = _interaction()

        run_async(self._cog(db_engine)._reward_close(interaction, thread, config))

        kwargs = interaction.followup.send.await_args.kwargs
        view = kwargs["view"]
        assert isinstance(view, HelperPickView)
        [select] = view.children
        assert [o.value for o in select.options] == ["2", "3"]
        assert "15 bonus XP" in kwargs["embed"].description
        thread.edit.assert_not_awaited()


# ===========================================================================
# Onboarding
# ===========================================================================
class TestOnboardingWelcome:
    def _setup(self, engine, **config):
        add_guild(engine)
        update_onboarding(engine, GUILD_ID, {
            "enabled": True,
            "welcome_channel_id": "10",
            "show_typing_indicator": False,
            "thread_auto_delete": "7d",
            **config,
        })

    def _guild(self):
        thread = MagicMock()
        thread.id = 777
        thread.send = AsyncMock()
        thread.add_user = AsyncMock()
        channel = MagicMock(spec=discord.TextChannel)
        channel.create_thread = AsyncMock(return_value=thread)
        guild = _guild_mock()
        guild.get_channel.return_value = channel
        roles = {11: SimpleNamespace(id=11, name="Artist"), 12: SimpleNamespace(id=12, name="Coder")}
        guild.get_role.side_effect = roles.get
        return guild, channel, thread

    def test_creates_thread_and_plays_messages(self, db_engine):
        self._setup(db_engine, roles_on_join=["11", "404"], thread_name_template="Hi {username}")
        create_message(db_engine, GUILD_ID, "Welcome {user} to {server}!")
        create_message(db_engine, GUILD_ID, "Pick roles", selectable_roles=["11", "12"])
        guild, channel, thread = self._guild()
        member = _member_mock()
        member.guild = guild

        result = run_async(Onboarding(_bot(db_engine)).welcome(member))

        assert result is thread
        assert channel.create_thread.await_args.kwargs["name"] == "Hi user42"
        assert channel.create_thread.await_args.kwargs["type"] is discord.ChannelType.private_thread
        thread.add_user.assert_awaited_once_with(member)
        [join_role], _ = member.add_roles.await_args
        assert join_role.id == 11

        first, second = thread.send.await_args_list
        assert first.args == ("Welcome <@42> to Cozy Corner!",)
        assert "view" in second.kwargs
        later = datetime.now(UTC) + timedelta(days=8)
        assert expired_threads(db_engine, later) == [(GUILD_ID, "777")]

    def test_disabled(self, db_engine):
        member = _member_mock()
        member.guild = self._guild()[0]
        assert run_async(Onboarding(_bot(db_engine)).welcome(member)) is None

    def test_no_messages(self, db_engine):
        self._setup(db_engine)
        guild, channel, _ = self._guild()
        member = _member_mock()
        member.guild = guild

        assert run_async(Onboarding(_bot(db_engine)).welcome(member)) is None
        channel.create_thread.assert_not_awaited()

    def test_welcome_channel_not_text(self, db_engine):
        self._setup(db_engine)
        create_message(db_engine, GUILD_ID, "hi")
        guild, _, _ = self._guild()
        guild.get_channel.return_value = None
        member = _member_mock()
        member.guild = guild

        assert run_async(Onboarding(_bot(db_engine)).welcome(member)) is None


class TestOnboardingRoleSelect:
    CUSTOM_ID = f"{ONBOARDING_SELECT_PREFIX}777"

    def _interaction(self, member, guild, values):
        menu = SimpleNamespace(
            custom_id=self.CUSTOM_ID,
            options=[SimpleNamespace(value="11"), SimpleNamespace(value="12")],
        )
        return SimpleNamespace(
            user=member,
            guild=guild,
            data={"custom_id": self.CUSTOM_ID, "values": values},
            message=SimpleNamespace(components=[SimpleNamespace(children=[menu])]),
        )

    def _guild(self):
        guild = _guild_mock()
        roles = {
            11: SimpleNamespace(id=11, name="Artist"),
            12: SimpleNamespace(id=12, name="Coder"),
            50: SimpleNamespace(id=50, name="Staff"),
        }
        guild.get_role.side_effect = roles.get
        return guild, roles

    def test_menu_role_ids(self):
        interaction = self._interaction(None, None, [])
        assert _menu_role_ids(interaction.message, self.CUSTOM_ID) == ["11", "12"]
        assert _menu_role_ids(interaction.message, "other") == []
        assert _menu_role_ids(None, self.CUSTOM_ID) == []

    def test_adds_and_removes_menu_roles_only(self):
        guild, roles = self._guild()
        member = _member_mock(roles=[roles[12], roles[50]])

        summary = run_async(Onboarding(MagicMock()).apply_role_selection(
            self._interaction(member, guild, ["11"]), self.CUSTOM_ID,
        ))

        assert summary == "✅ Added: **Artist**\n🔴 Removed: **Coder**"
        member.add_roles.assert_awaited_once()
        member.remove_roles.assert_awaited_once()
        assert member.remove_roles.await_args.args == (roles[12],)

    def test_nothing_changes(self):
        guild, roles = self._guild()
        member = _member_mock(roles=[roles[11]])

        summary = run_async(Onboarding(MagicMock()).apply_role_selection(
            self._interaction(member, guild, ["11"]), self.CUSTOM_ID,
        ))

        assert summary == "✨ Your roles are already up to date!"

    def test_outside_a_guild(self):
        summary = run_async(Onboarding(MagicMock()).apply_role_selection(
            self._interaction(_member_mock(), None, []), self.CUSTOM_ID,
        ))
        assert summary.startswith("❌")

    def test_role_select_view(self):
        async def _build():
            return role_select_view(777, [SimpleNamespace(id=11, name="Artist")])

        view = run_async(_build())
        [select] = view.children
        assert select.custom_id == self.CUSTOM_ID
        assert (select.min_values, select.max_values) == (0, 1)
        assert view.timeout is None

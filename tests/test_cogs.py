from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from conftest import DISCORD_USER, build_member, build_violation

from wardcord.bot.cogs import events_listener, restriction_listener, standing_buttons, violation_cmds
from wardcord.datatypes.discord_datatypes import ChannelID
from wardcord.datatypes.violation_datatypes import FeatureRestriction, ViolationType

MODERATOR = 222


def _permissions(administrator=False, moderate_members=False):
    return SimpleNamespace(administrator=administrator, manage_guild=False, moderate_members=moderate_members)


@pytest.fixture
def moderator(backend, guild):
    mod = build_member(MODERATOR, guild)
    mod.guild_permissions = _permissions(administrator=True, moderate_members=True)
    backend.add_user(8, MODERATOR)
    return mod


def _ctx(author, guild):
    return SimpleNamespace(author=author, guild=guild, defer=AsyncMock(), send_followup=AsyncMock())


def _followup_text(ctx):
    args, kwargs = ctx.send_followup.await_args
    return args[0] if args else kwargs.get("content", "")


# --------------------------
# Setup
# --------------------------

def test_setup_registers_every_cog(warning_system):
    captured = []
    fake_bot = SimpleNamespace(add_cog=captured.append)

    violation_cmds.setup(fake_bot, warning_system)
    standing_buttons.setup(fake_bot, warning_system)
    restriction_listener.setup(fake_bot, MagicMock())
    events_listener.setup(fake_bot, warning_system, MagicMock())

    assert [type(cog) for cog in captured] == [
        violation_cmds.ViolationCog,
        standing_buttons.StandingButtonsCog,
        restriction_listener.RestrictionListenerCog,
        events_listener.EventsListenerCog,
    ]


def test_parse_restriction_list():
    assert violation_cmds.parse_restriction_list(None) is None
    assert violation_cmds.parse_restriction_list("  ") is None
    assert violation_cmds.parse_restriction_list("message_link, VOICE_SPEAK,") == {
        FeatureRestriction.MESSAGE_LINK,
        FeatureRestriction.VOICE_SPEAK,
    }
    with pytest.raises(ValueError):
        violation_cmds.parse_restriction_list("MESSAGE_LINK,FLYING")


# --------------------------
# /violation
# --------------------------

async def _issue(cog, ctx, user, restrictions=None, expires_in_days=None):
    callback = violation_cmds.ViolationCog.issue.callback
    await callback(cog, ctx, user, "SPAM", "LOW", "flooding", restrictions, expires_in_days, None, None)


@pytest.mark.asyncio
async def test_issue_command_issues_violation(bot, warning_system, backend, member, moderator, guild):
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(moderator, guild)

    await _issue(cog, ctx, member, restrictions="MESSAGE_LINK", expires_in_days=5)

    ctx.defer.assert_awaited_once_with(ephemeral=True)
    assert "Violation #1 issued" in _followup_text(ctx)
    draft = backend.issued_drafts[0]
    assert draft.type is ViolationType.SPAM
    assert draft.restrictions == {FeatureRestriction.MESSAGE_LINK}
    assert str(draft.issued_by) == "8"


@pytest.mark.asyncio
async def test_issue_command_requires_moderator(bot, warning_system, backend, member, guild):
    regular = build_member(MODERATOR, guild)
    regular.guild_permissions = _permissions()
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(regular, guild)

    await _issue(cog, ctx, member)

    assert "permission" in _followup_text(ctx)
    assert backend.issued_drafts == []


@pytest.mark.asyncio
async def test_issue_command_rejects_unknown_restriction(bot, warning_system, backend, member, moderator, guild):
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(moderator, guild)

    await _issue(cog, ctx, member, restrictions="TELEPORT")

    assert "TELEPORT" in _followup_text(ctx)
    assert backend.issued_drafts == []


@pytest.mark.asyncio
async def test_issue_command_reports_backend_failure(bot, warning_system, backend, member, moderator, guild):
    backend.fail_issue = True
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(moderator, guild)

    await _issue(cog, ctx, member)

    assert "Failed to issue" in _followup_text(ctx)


@pytest.mark.asyncio
async def test_expire_command_requires_administrator(bot, warning_system, backend, member, moderator, guild):
    backend.violations.append(build_violation(100, restrictions={FeatureRestriction.MESSAGE_LINK}))
    cog = violation_cmds.ViolationCog(bot, warning_system)
    callback = violation_cmds.ViolationCog.expire.callback

    moderator.guild_permissions = _permissions(moderate_members=True)
    ctx = _ctx(moderator, guild)
    await callback(cog, ctx, member, 100)
    assert "Only administrators" in _followup_text(ctx)

    moderator.guild_permissions = _permissions(administrator=True)
    ctx = _ctx(moderator, guild)
    await callback(cog, ctx, member, 100)
    assert "expired" in _followup_text(ctx)
    assert [violation_id for violation_id, _ in backend.expired] == [100]


@pytest.mark.asyncio
async def test_standing_command_shows_own_standing(bot, warning_system, backend, member, guild):
    backend.violations.append(build_violation(100))
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(member, guild)

    await violation_cmds.ViolationCog.standing.callback(cog, ctx, None)

    kwargs = ctx.send_followup.await_args.kwargs
    assert kwargs["embed"].title.endswith(member.display_name)
    assert "view" in kwargs


@pytest.mark.asyncio
async def test_standing_command_blocks_other_users_for_members(bot, warning_system, member, guild):
    other = build_member(333, guild)
    member.guild_permissions = _permissions()
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(member, guild)

    await violation_cmds.ViolationCog.standing.callback(cog, ctx, other)

    assert "only view your own" in _followup_text(ctx)


@pytest.mark.asyncio
async def test_violations_command_lists_active(bot, warning_system, backend, member, guild):
    backend.violations.append(build_violation(100))
    cog = violation_cmds.ViolationCog(bot, warning_system)
    ctx = _ctx(member, guild)
    member.guild_permissions = _permissions()

    await violation_cmds.ViolationCog.violations.callback(cog, ctx, None)

    embed = ctx.send_followup.await_args.kwargs["embed"]
    assert len(embed.fields) == 1
    assert "#100" in embed.fields[0].name


@pytest.mark.asyncio
async def test_commands_reply_clearly_outside_a_server(bot, warning_system, backend, member):
    cog = violation_cmds.ViolationCog(bot, warning_system)

    ctx = _ctx(member, None)
    await violation_cmds.ViolationCog.standing.callback(cog, ctx, None)
    assert "only be used in a server" in _followup_text(ctx)

    ctx = _ctx(member, None)
    await _issue(cog, ctx, member)
    assert "only be used in a server" in _followup_text(ctx)
    assert backend.issued_drafts == []


# --------------------------
# Buttons
# --------------------------

def _button_interaction(user, custom_id, guild=None):
    return SimpleNamespace(
        type=discord.InteractionType.component,
        data={"custom_id": custom_id},
        user=user,
        guild=guild,
        response=SimpleNamespace(defer=AsyncMock(), send_message=AsyncMock()),
        followup=SimpleNamespace(send=AsyncMock()),
    )


@pytest.mark.asyncio
async def test_standing_button_works_in_dms(bot, warning_system, member):
    cog = standing_buttons.StandingButtonsCog(bot, warning_system)
    interaction = _button_interaction(member, "standing_check")

    await cog.on_interaction(interaction)

    interaction.response.defer.assert_awaited_once_with(ephemeral=True)
    embed = interaction.followup.send.await_args.kwargs["embed"]
    assert "Account standing" in embed.title


@pytest.mark.asyncio
async def test_view_violations_button(bot, warning_system, backend, member, guild):
    backend.violations.append(build_violation(100))
    cog = standing_buttons.StandingButtonsCog(bot, warning_system)
    interaction = _button_interaction(member, "view_violations", guild)

    await cog.on_interaction(interaction)

    embed = interaction.followup.send.await_args.kwargs["embed"]
    assert "#100" in embed.fields[0].name


@pytest.mark.asyncio
async def test_review_button_without_log_channel_points_to_moderators(bot, warning_system, member, guild):
    cog = standing_buttons.StandingButtonsCog(bot, warning_system)
    interaction = _button_interaction(member, "review_violation_42", guild)

    await cog.on_interaction(interaction)

    message = interaction.response.send_message.await_args.args[0]
    assert "#42" in message and "contact a moderator" in message


@pytest.mark.asyncio
async def test_review_button_posts_to_log_channel(bot, warning_system, member, guild):
    channel = MagicMock(spec=discord.TextChannel)
    channel.send = AsyncMock()
    guild.get_channel = MagicMock(return_value=channel)
    warning_system.audit_channel_id = ChannelID(5)
    cog = standing_buttons.StandingButtonsCog(bot, warning_system)
    interaction = _button_interaction(member, "review_violation_42", guild)

    await cog.on_interaction(interaction)

    assert "#42" in channel.send.await_args.args[0]
    interaction.response.send_message.assert_awaited_once()


@pytest.mark.asyncio
async def test_review_button_falls_back_when_log_channel_rejects(bot, warning_system, member, guild):
    channel = MagicMock(spec=discord.TextChannel)
    channel.send = AsyncMock(side_effect=discord.Forbidden(MagicMock(status=403, reason="x"), "missing access"))
    guild.get_channel = MagicMock(return_value=channel)
    warning_system.audit_channel_id = ChannelID(5)
    cog = standing_buttons.StandingButtonsCog(bot, warning_system)
    interaction = _button_interaction(member, "review_violation_42", guild)

    await cog.on_interaction(interaction)

    message = interaction.response.send_message.await_args.args[0]
    assert "contact a moderator" in message


@pytest.mark.asyncio
async def test_foreign_buttons_are_ignored(bot, warning_system, member, guild):
    cog = standing_buttons.StandingButtonsCog(bot, warning_system)
    interaction = _button_interaction(member, "poll_vote", guild)

    await cog.on_interaction(interaction)

    interaction.response.defer.assert_not_awaited()
    interaction.response.send_message.assert_not_awaited()


# --------------------------
# Listeners
# --------------------------

@pytest.mark.asyncio
async def test_restriction_listener_forwards_events():
    enforcer = SimpleNamespace(
        handle_message=AsyncMock(),
        handle_voice_state=AsyncMock(),
        handle_interaction=AsyncMock(),
        handle_member_update=AsyncMock(),
    )
    cog = restriction_listener.RestrictionListenerCog(SimpleNamespace(), enforcer)  # type: ignore[arg-type]
    before, after = object(), object()

    await cog.on_message("message")
    await cog.on_voice_state_update("member", before, after)
    await cog.on_interaction("interaction")
    await cog.on_member_update(before, after)

    enforcer.handle_message.assert_awaited_once_with("message")
    enforcer.handle_voice_state.assert_awaited_once_with("member", after)
    enforcer.handle_interaction.assert_awaited_once_with("interaction")
    enforcer.handle_member_update.assert_awaited_once_with(before, after)


@pytest.mark.asyncio
async def test_on_ready_rehydrates_once_and_starts_sweeper():
    bot = SimpleNamespace(user=SimpleNamespace(id=DISCORD_USER), change_presence=AsyncMock())
    warning_system = SimpleNamespace(rehydrate=AsyncMock(side_effect=RuntimeError("backend down")))
    sweeper = MagicMock()
    cog = events_listener.EventsListenerCog(bot, warning_system, sweeper)  # type: ignore[arg-type]

    await cog.on_ready()
    await cog.on_ready()

    warning_system.rehydrate.assert_awaited_once()
    sweeper.start.assert_called_once()
    bot.change_presence.assert_awaited_once()


@pytest.mark.asyncio
async def test_application_command_error_replies():
    cog = events_listener.EventsListenerCog(SimpleNamespace(), SimpleNamespace(), MagicMock())  # type: ignore[arg-type]
    ctx = SimpleNamespace(command=SimpleNamespace(name="standing"), respond=AsyncMock())

    await cog.on_application_command_error(ctx, RuntimeError("boom"))

    ctx.respond.assert_awaited_once()

import pytest
from conftest import NOW, build_violation

from wardcord.datatypes.violation_datatypes import (
    AccountStanding,
    AccountStandingData,
    FeatureRestriction,
    PolicyType,
    ViolationAction,
    ViolationActionType,
)
from wardcord.violations import notifications


def _field(embed, name):
    return next(field.value for field in embed.fields if field.name == name)


def test_button_id_helpers():
    assert notifications.is_warning_system_button("standing_check")
    assert notifications.is_warning_system_button("review_violation_12")
    assert not notifications.is_warning_system_button("poll_vote")
    assert not notifications.is_warning_system_button(None)
    assert notifications.review_violation_id("review_violation_12") == 12
    assert notifications.review_violation_id("review_violation_x") is None


def test_violation_dm_embed_links_rules():
    violation = build_violation(5, restrictions={FeatureRestriction.MESSAGE_LINK})
    violation.policy_violated = PolicyType.ADVERTISING

    embed = notifications.violation_dm_embed(violation, "Test Guild", "https://rules.example")

    assert "Test Guild" in embed.description
    assert _field(embed, "Expires") == "Permanent"
    assert _field(embed, "Restrictions") == "• Sending links"
    rules = _field(embed, "Rules")
    assert rules.startswith("[Advertising (500)](https://rules.example/rules#advertising)")
    assert "spam-mentions" in rules
    assert embed.footer.text == "Violation #5"


def test_restriction_notice_truncates_deleted_content():
    embed = notifications.restriction_notice_embed(
        FeatureRestriction.MESSAGE_LINK,
        deleted_content="x" * 5000,
        violation=build_violation(1, expires_at=NOW, reason="links"),
        repeat_count=2,
    )
    assert len(_field(embed, "Deleted message")) <= notifications.FIELD_LIMIT
    assert _field(embed, "Repeat offense") == "Occurrence #3"


def test_audit_embed_lists_actions():
    actions = [
        ViolationAction(ViolationActionType.TIMEOUT, applied=True),
        ViolationAction(ViolationActionType.BAN, applied=False),
    ]
    embed = notifications.audit_embed(build_violation(9), "<@1>", None, actions)
    assert _field(embed, "Moderator") == "System"
    assert _field(embed, "Actions") == "TIMEOUT, BAN (failed)"


def test_standing_embed_and_empty_list():
    data = AccountStandingData(
        standing=AccountStanding.AT_RISK,
        active_violations=2,
        total_violations=4,
        severity_score=17,
    )
    embed = notifications.standing_embed("someone", data)
    assert embed.color.value == 0xFF4500
    assert _field(embed, "Severity score") == "17"
    assert _field(embed, "Active restrictions") == "None"

    empty = notifications.violation_list_embed([])
    assert empty.description == "✅ No active violations."


def test_violation_list_embed_limits_entries():
    violations = [build_violation(i) for i in range(15)]
    embed = notifications.violation_list_embed(violations, limit=10)
    assert len(embed.fields) == 10
    assert embed.footer.text == "Showing 10 of 15"


def test_suspension_embed_includes_appeal():
    embed = notifications.suspension_embed("Test Guild", "https://appeal.example")
    assert "Submit an appeal" in _field(embed, "Appeal")
    assert not notifications.suspension_embed("Test Guild", "").fields


@pytest.mark.asyncio
async def test_views_use_fixed_custom_ids():
    view = notifications.standing_overview_view()
    assert [item.custom_id for item in view.children] == ["view_violations", "request_review"]
    assert view.timeout is None
    assert notifications.review_button_view(7).children[0].custom_id == "review_violation_7"

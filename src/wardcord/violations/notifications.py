"""
Embeds and button rows sent by the warning system.

Buttons use fixed ``custom_id`` values and are handled by the
``standing_buttons`` cog, so they keep working in DMs after a restart.
"""

from __future__ import annotations

import datetime
from typing import Iterable, List, Optional, Sequence

import discord

from wardcord.datatypes.violation_datatypes import (
    AccountStanding,
    AccountStandingData,
    FeatureRestriction,
    Violation,
    ViolationAction,
)
from wardcord.util.discord_utils import PERMANENT_DURATION, discord_timestamp, format_remaining
from wardcord.violations.policy_table import (
    POLICY_LABELS,
    RESTRICTION_LABELS,
    SEVERITY_COLORS,
    SEVERITY_LABELS,
    STANDING_COLORS,
    STANDING_DESCRIPTIONS,
    STANDING_LABELS,
    VIOLATION_TYPE_LABELS,
    PolicyTable,
    default_policy_table,
    policy_link,
)

STANDING_CHECK_ID = "standing_check"
VIEW_VIOLATIONS_ID = "view_violations"
REQUEST_REVIEW_ID = "request_review"
REVIEW_VIOLATION_PREFIX = "review_violation_"

WARNING_SYSTEM_BUTTON_IDS = frozenset({STANDING_CHECK_ID, VIEW_VIOLATIONS_ID, REQUEST_REVIEW_ID})

# Discord caps embed field values at 1024 characters
FIELD_LIMIT = 1024


def is_warning_system_button(custom_id: Optional[str]) -> bool:
    if not custom_id:
        return False
    return custom_id in WARNING_SYSTEM_BUTTON_IDS or custom_id.startswith(REVIEW_VIOLATION_PREFIX)


def review_violation_id(custom_id: str) -> Optional[int]:
    """Extract the violation id from a ``review_violation_<id>`` custom id."""
    if not custom_id.startswith(REVIEW_VIOLATION_PREFIX):
        return None
    try:
        return int(custom_id[len(REVIEW_VIOLATION_PREFIX):])
    except ValueError:
        return None


def _truncate(text: str, limit: int = FIELD_LIMIT) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def format_restrictions(restrictions: Iterable[FeatureRestriction]) -> str:
    labels = sorted(RESTRICTION_LABELS.get(r, r.value) for r in restrictions)
    return "\n".join(f"• {label}" for label in labels) if labels else "None"


def format_policies(violation: Violation, rules_base_url: str, table: PolicyTable = default_policy_table) -> str:
    policies = [violation.policy_violated] if violation.policy_violated else []
    for policy in table.policies_for_type(violation.type):
        if policy not in policies:
            policies.append(policy)
    return "\n".join(f"[{POLICY_LABELS[p]}]({policy_link(p, rules_base_url)})" for p in policies)


def format_expiration(expires_at: Optional[datetime.datetime]) -> str:
    if expires_at is None:
        return PERMANENT_DURATION
    return f"{discord_timestamp(expires_at, 'f')} ({discord_timestamp(expires_at, 'R')})"


# --------------------------
# Button rows
# --------------------------

def _button_view(*buttons: discord.ui.Button) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    for button in buttons:
        view.add_item(button)
    return view


def review_button_view(violation_id: int) -> discord.ui.View:
    return _button_view(
        discord.ui.Button(
            label="Request review",
            emoji="📝",
            style=discord.ButtonStyle.secondary,
            custom_id=f"{REVIEW_VIOLATION_PREFIX}{violation_id}",
        )
    )


def standing_check_view() -> discord.ui.View:
    return _button_view(
        discord.ui.Button(
            label="Check my standing",
            emoji="📊",
            style=discord.ButtonStyle.secondary,
            custom_id=STANDING_CHECK_ID,
        )
    )


def standing_overview_view() -> discord.ui.View:
    return _button_view(
        discord.ui.Button(label="View violations", emoji="📋", style=discord.ButtonStyle.primary, custom_id=VIEW_VIOLATIONS_ID),
        discord.ui.Button(label="Request review", emoji="📝", style=discord.ButtonStyle.secondary, custom_id=REQUEST_REVIEW_ID),
    )


# --------------------------
# Embeds
# --------------------------

def violation_dm_embed(
    violation: Violation,
    guild_name: str,
    rules_base_url: str,
    table: PolicyTable = default_policy_table,
) -> discord.Embed:
    """DM sent to a user when a violation is issued against them."""
    embed = discord.Embed(
        title="⚠️ You received a violation",
        description=f"A moderator recorded a rule violation on **{guild_name}**.",
        color=SEVERITY_COLORS[violation.severity],
        timestamp=violation.issued_at,
    )
    embed.add_field(name="Type", value=VIOLATION_TYPE_LABELS[violation.type], inline=True)
    embed.add_field(name="Severity", value=SEVERITY_LABELS[violation.severity], inline=True)
    embed.add_field(name="Expires", value=format_expiration(violation.expires_at), inline=True)
    embed.add_field(name="Reason", value=_truncate(violation.reason or "No reason given"), inline=False)
    embed.add_field(name="Restrictions", value=format_restrictions(violation.restrictions), inline=False)
    embed.add_field(name="Rules", value=format_policies(violation, rules_base_url, table) or "-", inline=False)
    embed.set_footer(text=f"Violation #{violation.id}")
    return embed


def restriction_notice_embed(
    restriction: FeatureRestriction,
    *,
    deleted_content: Optional[str] = None,
    violation: Optional[Violation] = None,
    repeat_count: int = 0,
    rate_limit: Optional[int] = None,
    retry_after_seconds: Optional[int] = None,
) -> discord.Embed:
    """DM explaining why a message was deleted by an active restriction."""
    if restriction in (FeatureRestriction.RATE_LIMIT, FeatureRestriction.TIMEOUT):
        description = f"You exceeded the limit of {rate_limit} messages per minute."
    else:
        description = f"Your message used a feature you currently cannot use: **{RESTRICTION_LABELS[restriction]}**."

    embed = discord.Embed(title="❌ Message deleted", description=description, color=discord.Color.red())
    if retry_after_seconds is not None:
        embed.add_field(name="Next message allowed in", value=f"{retry_after_seconds} seconds", inline=False)

    if violation is not None:
        embed.add_field(name="Restriction ends", value=format_expiration(violation.expires_at), inline=True)
        embed.add_field(name="Time left", value=format_remaining(violation.expires_at), inline=True)
        if repeat_count > 0:
            embed.add_field(name="Repeat offense", value=f"Occurrence #{repeat_count + 1}", inline=True)
        if violation.reason:
            embed.add_field(name="Reason", value=_truncate(violation.reason), inline=False)

    if deleted_content:
        embed.add_field(name="Deleted message", value=_truncate(f"```\n{deleted_content[:1000]}\n```"), inline=False)
    return embed


def audit_embed(
    violation: Violation,
    user_mention: str,
    issuer_mention: Optional[str] = None,
    actions: Sequence[ViolationAction] = (),
) -> discord.Embed:
    """Moderation-log entry for a newly issued violation."""
    embed = discord.Embed(
        title=f"📋 Violation #{violation.id} issued",
        color=SEVERITY_COLORS[violation.severity],
        timestamp=violation.issued_at,
    )
    embed.add_field(name="User", value=user_mention, inline=True)
    embed.add_field(name="Moderator", value=issuer_mention or "System", inline=True)
    embed.add_field(
        name="Classification",
        value=f"{VIOLATION_TYPE_LABELS[violation.type]} ({SEVERITY_LABELS[violation.severity]})",
        inline=True,
    )
    embed.add_field(name="Reason", value=_truncate(violation.reason or "-"), inline=False)
    embed.add_field(name="Restrictions", value=format_restrictions(violation.restrictions), inline=True)
    embed.add_field(name="Expires", value=format_expiration(violation.expires_at), inline=True)
    if actions:
        applied = ", ".join(f"{a.type.value}{'' if a.applied else ' (failed)'}" for a in actions)
        embed.add_field(name="Actions", value=applied, inline=False)
    return embed


def suspension_embed(guild_name: str, appeal_url: str) -> discord.Embed:
    embed = discord.Embed(
        title="🔒 Account suspended",
        description=(
            f"Your access to **{guild_name}** was suspended because your account standing "
            "reached SUSPENDED through severe or repeated violations."
        ),
        color=STANDING_COLORS[AccountStanding.SUSPENDED],
    )
    if appeal_url:
        embed.add_field(name="Appeal", value=f"[Submit an appeal]({appeal_url})", inline=False)
    return embed


def standing_embed(display_name: str, data: AccountStandingData) -> discord.Embed:
    """Overview of a user's standing, shown by ``/standing`` and the standing button."""
    embed = discord.Embed(
        title=f"📊 Account standing: {display_name}",
        description=f"**{STANDING_LABELS[data.standing]}**\n{STANDING_DESCRIPTIONS[data.standing]}",
        color=STANDING_COLORS[data.standing],
    )
    embed.add_field(name="Active violations", value=str(data.active_violations), inline=True)
    embed.add_field(name="Total violations", value=str(data.total_violations), inline=True)
    embed.add_field(name="Severity score", value=str(data.severity_score), inline=True)
    embed.add_field(name="Active restrictions", value=format_restrictions(data.restrictions), inline=False)
    if data.next_expiration is not None:
        embed.add_field(name="Next expiration", value=format_expiration(data.next_expiration), inline=False)
    return embed


def violation_list_embed(
    violations: Sequence[Violation],
    title: str = "📋 Active violations",
    show_ids: bool = True,
    limit: int = 10,
) -> discord.Embed:
    embed = discord.Embed(title=title, color=discord.Color.orange())
    if not violations:
        embed.description = "✅ No active violations."
        return embed

    ordered: List[Violation] = sorted(violations, key=lambda v: v.issued_at, reverse=True)
    for index, violation in enumerate(ordered[:limit], start=1):
        name = f"{index}. {VIOLATION_TYPE_LABELS[violation.type]} ({SEVERITY_LABELS[violation.severity]})"
        if show_ids:
            name += f" #{violation.id}"
        value = (
            f"{_truncate(violation.reason or '-', 200)}\n"
            f"Issued {discord_timestamp(violation.issued_at, 'd')}, "
            f"expires {format_expiration(violation.expires_at)}"
        )
        embed.add_field(name=name, value=value, inline=False)
    if len(ordered) > limit:
        embed.set_footer(text=f"Showing {limit} of {len(ordered)}")
    return embed

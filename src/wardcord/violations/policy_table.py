"""
Static violation policy data.

Maps each :class:`ViolationType` to the rule sections it breaches, the feature
restrictions it carries by default and, per severity, how long the violation
stays active for a first and a repeat offense. A duration of ``0`` days means
permanent; combined with ``use_discord_timeout`` it means a ban.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from wardcord.datatypes.violation_datatypes import (
    AccountStanding,
    FeatureRestriction,
    PolicyType,
    ViolationSeverity,
    ViolationType,
)


@dataclass(frozen=True, slots=True)
class ExpirationRule:
    """How long a violation stays active, and whether it is enforced natively."""

    first_offense_days: int
    repeat_offense_days: int
    use_discord_timeout: bool = False

    def __post_init__(self) -> None:
        if self.first_offense_days < 0 or self.repeat_offense_days < 0:
            raise ValueError("Expiration rule durations must be non-negative")

    def days_for(self, is_repeat: bool) -> int:
        return self.repeat_offense_days if is_repeat else self.first_offense_days


L, M, H, C = ViolationSeverity.LOW, ViolationSeverity.MEDIUM, ViolationSeverity.HIGH, ViolationSeverity.CRITICAL

# (first offense days, repeat offense days, use native timeout/ban)
_DURATION_ROWS: Dict[ViolationType, Dict[ViolationSeverity, Tuple[int, int, bool]]] = {
    ViolationType.TOXICITY: {L: (3, 7, False), M: (7, 30, False), H: (7, 14, True), C: (28, 0, True)},
    ViolationType.SPAM: {L: (1, 3, False), M: (3, 14, False), H: (7, 30, False), C: (30, 90, False)},
    ViolationType.NSFW: {L: (7, 14, False), M: (14, 30, False), H: (30, 60, True), C: (90, 0, True)},
    ViolationType.PRIVACY: {L: (7, 14, False), M: (30, 60, False), H: (60, 90, True), C: (180, 0, True)},
    ViolationType.IMPERSONATION: {L: (14, 30, False), M: (30, 60, False), H: (60, 90, True), C: (0, 0, True)},
    ViolationType.ILLEGAL: {L: (30, 60, True), M: (60, 90, True), H: (90, 180, True), C: (0, 0, True)},
    ViolationType.ADVERTISING: {L: (3, 7, False), M: (7, 30, False), H: (30, 60, False), C: (60, 180, False)},
    ViolationType.SELF_HARM: {L: (1, 7, False), M: (7, 14, True), H: (14, 28, True), C: (28, 0, True)},
    ViolationType.EVASION: {L: (30, 60, True), M: (60, 90, True), H: (90, 180, True), C: (0, 0, True)},
    ViolationType.OTHER: {L: (7, 14, False), M: (14, 30, False), H: (30, 60, True), C: (90, 180, True)},
}

DEFAULT_DURATIONS: Dict[ViolationType, Dict[ViolationSeverity, ExpirationRule]] = {
    violation_type: {severity: ExpirationRule(*row) for severity, row in rows.items()}
    for violation_type, rows in _DURATION_ROWS.items()
}

DEFAULT_POLICIES: Dict[ViolationType, List[PolicyType]] = {
    ViolationType.SPAM: [PolicyType.SPAM_MENTIONS],
    ViolationType.TOXICITY: [PolicyType.BASIC_BEHAVIOR],
    ViolationType.NSFW: [PolicyType.TEXT_VOICE],
    ViolationType.PRIVACY: [PolicyType.IDENTITY_PRIVACY, PolicyType.BASIC_BEHAVIOR],
    ViolationType.IMPERSONATION: [PolicyType.IDENTITY_PRIVACY],
    ViolationType.ILLEGAL: [PolicyType.BASIC_BEHAVIOR],
    ViolationType.ADVERTISING: [PolicyType.ADVERTISING],
    ViolationType.SELF_HARM: [PolicyType.BASIC_BEHAVIOR],
    ViolationType.EVASION: [PolicyType.TECHNICAL],
    ViolationType.OTHER: [PolicyType.MODERATION],
}

DEFAULT_RESTRICTIONS: Dict[ViolationType, frozenset[FeatureRestriction]] = {
    ViolationType.SPAM: frozenset({FeatureRestriction.MESSAGE_EMBED}),
    ViolationType.TOXICITY: frozenset({FeatureRestriction.RATE_LIMIT}),
    ViolationType.NSFW: frozenset({FeatureRestriction.MESSAGE_ATTACH, FeatureRestriction.MESSAGE_LINK}),
    ViolationType.PRIVACY: frozenset({FeatureRestriction.MESSAGE_LINK}),
    ViolationType.IMPERSONATION: frozenset({FeatureRestriction.NICKNAME_CHANGE}),
    ViolationType.ILLEGAL: frozenset({FeatureRestriction.MESSAGE_LINK, FeatureRestriction.MESSAGE_ATTACH}),
    ViolationType.ADVERTISING: frozenset({FeatureRestriction.MESSAGE_LINK, FeatureRestriction.MESSAGE_EMBED}),
    ViolationType.SELF_HARM: frozenset({FeatureRestriction.MESSAGE_ATTACH}),
    ViolationType.EVASION: frozenset({FeatureRestriction.RATE_LIMIT}),
    ViolationType.OTHER: frozenset(),
}

# Types that always carry RATE_LIMIT unless they are enforced natively
RATE_LIMITED_TYPES = frozenset({ViolationType.TOXICITY, ViolationType.EVASION})

POLICY_ANCHORS: Dict[PolicyType, str] = {
    PolicyType.BASIC_BEHAVIOR: "basic-behavior",
    PolicyType.TEXT_VOICE: "text-voice",
    PolicyType.SPAM_MENTIONS: "spam-mentions",
    PolicyType.CONTENT_CHANNELS: "content-channels",
    PolicyType.ADVERTISING: "advertising",
    PolicyType.IDENTITY_PRIVACY: "identity-privacy",
    PolicyType.LANGUAGE: "language",
    PolicyType.TECHNICAL: "technical",
    PolicyType.AGE_LAW: "age-law",
    PolicyType.MODERATION: "moderation",
}


class PolicyTable:
    """Lookup over the duration, policy and restriction tables.

    The tables are injectable so tests and deployments can override individual
    rows. Lookups for missing rows fall back to ``default_expiration_days``
    (a plain per-severity table without repeat escalation or native enforcement).
    """

    def __init__(
        self,
        durations: Optional[Mapping[ViolationType, Mapping[ViolationSeverity, ExpirationRule]]] = None,
        default_expiration_days: Optional[Mapping[ViolationSeverity, int]] = None,
        policies: Optional[Mapping[ViolationType, List[PolicyType]]] = None,
        restrictions: Optional[Mapping[ViolationType, frozenset[FeatureRestriction]]] = None,
    ) -> None:
        self.durations = DEFAULT_DURATIONS if durations is None else durations
        self.default_expiration_days: Dict[ViolationSeverity, int] = dict(
            default_expiration_days or {L: 7, M: 30, H: 90, C: 0}
        )
        self.policies = DEFAULT_POLICIES if policies is None else policies
        self.restrictions = DEFAULT_RESTRICTIONS if restrictions is None else restrictions

    def restrictions_for_type(self, violation_type: ViolationType) -> set[FeatureRestriction]:
        """Return a fresh, mutable set of the type's default restrictions."""
        return set(self.restrictions.get(violation_type, frozenset()))

    def expiration_rule(self, violation_type: ViolationType, severity: ViolationSeverity) -> ExpirationRule:
        rule = self.durations.get(violation_type, {}).get(severity)
        if rule is not None:
            return rule
        days = int(self.default_expiration_days.get(severity, 0))
        return ExpirationRule(days, days, False)

    def policies_for_type(self, violation_type: ViolationType) -> List[PolicyType]:
        """Return the policies breached by ``violation_type``; the first is primary."""
        return list(self.policies.get(violation_type, [PolicyType.MODERATION]))

    def primary_policy(self, violation_type: ViolationType) -> PolicyType:
        return self.policies_for_type(violation_type)[0]


default_policy_table = PolicyTable()


def restrictions_for_type(violation_type: ViolationType) -> set[FeatureRestriction]:
    return default_policy_table.restrictions_for_type(violation_type)


def expiration_rule(violation_type: ViolationType, severity: ViolationSeverity) -> ExpirationRule:
    return default_policy_table.expiration_rule(violation_type, severity)


def policies_for_type(violation_type: ViolationType) -> List[PolicyType]:
    return default_policy_table.policies_for_type(violation_type)


def policy_link(policy: PolicyType, rules_base_url: str) -> str:
    return f"{rules_base_url.rstrip('/')}/rules#{POLICY_ANCHORS[policy]}"


# --------------------------
# Labels and colours
# --------------------------

VIOLATION_TYPE_LABELS: Dict[ViolationType, str] = {
    ViolationType.SPAM: "Spam / Flooding",
    ViolationType.TOXICITY: "Toxic behaviour",
    ViolationType.NSFW: "Inappropriate content (NSFW)",
    ViolationType.PRIVACY: "Privacy violation",
    ViolationType.IMPERSONATION: "Impersonation",
    ViolationType.ILLEGAL: "Illegal content",
    ViolationType.ADVERTISING: "Unsolicited advertising",
    ViolationType.SELF_HARM: "Self-harm",
    ViolationType.EVASION: "Punishment evasion",
    ViolationType.OTHER: "Other violation",
}

SEVERITY_LABELS: Dict[ViolationSeverity, str] = {
    L: "Low",
    M: "Medium",
    H: "High",
    C: "Critical",
}

POLICY_LABELS: Dict[PolicyType, str] = {
    PolicyType.BASIC_BEHAVIOR: "Basic behaviour (100)",
    PolicyType.TEXT_VOICE: "Text & Voice (200)",
    PolicyType.SPAM_MENTIONS: "Spam, mentions and formatting (300)",
    PolicyType.CONTENT_CHANNELS: "Content & channels (400)",
    PolicyType.ADVERTISING: "Advertising (500)",
    PolicyType.IDENTITY_PRIVACY: "Identity & privacy (600)",
    PolicyType.LANGUAGE: "Language (700)",
    PolicyType.TECHNICAL: "Technical & accounts (800)",
    PolicyType.AGE_LAW: "Age & law (900)",
    PolicyType.MODERATION: "Moderation (1000)",
}

RESTRICTION_LABELS: Dict[FeatureRestriction, str] = {
    FeatureRestriction.MESSAGE_EMBED: "Sending embeds",
    FeatureRestriction.MESSAGE_ATTACH: "Sending attachments",
    FeatureRestriction.MESSAGE_LINK: "Sending links",
    FeatureRestriction.VOICE_SPEAK: "Speaking in voice",
    FeatureRestriction.VOICE_VIDEO: "Video in voice",
    FeatureRestriction.VOICE_STREAM: "Streaming",
    FeatureRestriction.REACTION_ADD: "Reactions and buttons",
    FeatureRestriction.THREAD_CREATE: "Creating threads",
    FeatureRestriction.NICKNAME_CHANGE: "Changing nickname",
    FeatureRestriction.RATE_LIMIT: "Message rate limit",
    FeatureRestriction.TIMEOUT: "Timeout",
}

STANDING_LABELS: Dict[AccountStanding, str] = {
    AccountStanding.GOOD: "✅ All good",
    AccountStanding.LIMITED: "⚠️ Limited",
    AccountStanding.VERY_LIMITED: "⚠️⚠️ Very limited",
    AccountStanding.AT_RISK: "🚨 At risk",
    AccountStanding.SUSPENDED: "🔒 Suspended",
}

STANDING_DESCRIPTIONS: Dict[AccountStanding, str] = {
    AccountStanding.GOOD: "You have no active violations and full access to every feature.",
    AccountStanding.LIMITED: (
        "An active violation has temporarily limited some features. "
        "Further violations lead to stricter restrictions."
    ),
    AccountStanding.VERY_LIMITED: (
        "Active violations have limited more features for a longer period. "
        "Further violations may put your account at risk."
    ),
    AccountStanding.AT_RISK: "You have active violations. Any further violation may lead to a permanent suspension.",
    AccountStanding.SUSPENDED: "Your access to the server was suspended because of severe or repeated violations.",
}

SEVERITY_COLORS: Dict[ViolationSeverity, int] = {
    L: 0xFFFF00,
    M: 0xFFA500,
    H: 0xFF4500,
    C: 0xFF0000,
}

STANDING_COLORS: Dict[AccountStanding, int] = {
    AccountStanding.GOOD: 0x00FF00,
    AccountStanding.LIMITED: 0xFFFF00,
    AccountStanding.VERY_LIMITED: 0xFFA500,
    AccountStanding.AT_RISK: 0xFF4500,
    AccountStanding.SUSPENDED: 0xFF0000,
}

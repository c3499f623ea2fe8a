"""
Violation, restriction and standing data structures.

Wire records coming from the moderation backend are loosely typed (restriction
lists and applied actions may arrive JSON-encoded inside strings, timestamps as
ISO strings). :func:`parse_violation` validates such a record once at the
boundary; the rest of the bot only handles :class:`Violation` instances.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional

from wardcord.datatypes.discord_datatypes import GuildID, InternalUserID
from wardcord.util.logger import get_logger

logger = get_logger("violation_datatypes")


class ViolationParseError(ValueError):
    """Raised when a backend violation record cannot be interpreted."""


class ViolationType(Enum):
    """Category of an adjudicated rule breach."""

    SPAM = "SPAM"
    TOXICITY = "TOXICITY"
    NSFW = "NSFW"
    PRIVACY = "PRIVACY"
    IMPERSONATION = "IMPERSONATION"
    ILLEGAL = "ILLEGAL"
    ADVERTISING = "ADVERTISING"
    SELF_HARM = "SELF_HARM"
    EVASION = "EVASION"
    OTHER = "OTHER"

    def __str__(self) -> str:
        return self.value


class ViolationSeverity(Enum):
    """Severity of a violation, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        return self.value


class PolicyType(Enum):
    """Section of the server rules a violation breaches."""

    BASIC_BEHAVIOR = "BASIC_BEHAVIOR"
    TEXT_VOICE = "TEXT_VOICE"
    SPAM_MENTIONS = "SPAM_MENTIONS"
    CONTENT_CHANNELS = "CONTENT_CHANNELS"
    ADVERTISING = "ADVERTISING"
    IDENTITY_PRIVACY = "IDENTITY_PRIVACY"
    LANGUAGE = "LANGUAGE"
    TECHNICAL = "TECHNICAL"
    AGE_LAW = "AGE_LAW"
    MODERATION = "MODERATION"

    def __str__(self) -> str:
        return self.value


class FeatureRestriction(Enum):
    """A capability temporarily revoked from a user."""

    MESSAGE_EMBED = "MESSAGE_EMBED"
    MESSAGE_ATTACH = "MESSAGE_ATTACH"
    MESSAGE_LINK = "MESSAGE_LINK"
    VOICE_SPEAK = "VOICE_SPEAK"
    VOICE_VIDEO = "VOICE_VIDEO"
    VOICE_STREAM = "VOICE_STREAM"
    REACTION_ADD = "REACTION_ADD"
    THREAD_CREATE = "THREAD_CREATE"
    NICKNAME_CHANGE = "NICKNAME_CHANGE"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"  # legacy alias of RATE_LIMIT

    def __str__(self) -> str:
        return self.value


RATE_LIMIT_RESTRICTIONS = frozenset({FeatureRestriction.RATE_LIMIT, FeatureRestriction.TIMEOUT})


class AccountStanding(Enum):
    """Trust tier derived from a user's active violations."""

    GOOD = "ALL_GOOD"
    LIMITED = "LIMITED"
    VERY_LIMITED = "VERY_LIMITED"
    AT_RISK = "AT_RISK"
    SUSPENDED = "SUSPENDED"

    def __str__(self) -> str:
        return self.value


class ViolationActionType(Enum):
    """Platform action applied as part of enforcing a violation."""

    ROLE_ADD = "ROLE_ADD"
    ROLE_REMOVE = "ROLE_REMOVE"
    TIMEOUT = "TIMEOUT"
    KICK = "KICK"
    BAN = "BAN"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ViolationAction:
    """One entry of ``actionsApplied``."""

    type: ViolationActionType
    applied: bool
    applied_at: Optional[datetime] = None
    target: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value, "applied": self.applied}
        if self.applied_at:
            payload["appliedAt"] = self.applied_at.isoformat()
        if self.target is not None:
            payload["target"] = self.target
        return payload


@dataclass(slots=True)
class Violation:
    """A recorded, adjudicated rule breach.

    Everything except ``expired_at`` (and the review fields, owned by the
    review workflow) is fixed once the backend has created the record.
    """

    id: int
    user_id: InternalUserID
    guild_id: GuildID
    type: ViolationType
    severity: ViolationSeverity
    reason: str
    issued_at: datetime
    policy_violated: Optional[PolicyType] = None
    content_snapshot: Optional[str] = None
    context: Optional[str] = None
    evidence: Optional[str] = None
    restrictions: frozenset[FeatureRestriction] = frozenset()
    actions_applied: List[ViolationAction] = field(default_factory=list)
    issued_by: Optional[InternalUserID] = None
    expires_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    review_requested: bool = False
    reviewed_by: Optional[InternalUserID] = None
    reviewed_at: Optional[datetime] = None
    review_outcome: Optional[str] = None
    review_notes: Optional[str] = None

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return True if the violation was swept or its window has elapsed."""
        if self.expired_at is not None:
            return True
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def is_due_for_expiry(self, now: Optional[datetime] = None) -> bool:
        """Return True if the sweeper should expire this violation."""
        return self.expired_at is None and self.expires_at is not None and self.expires_at <= (now or utcnow())

    def mark_expired(self, when: datetime) -> bool:
        """Set ``expired_at`` once. Returns False if it was already set."""
        if self.expired_at is not None:
            return False
        self.expired_at = when
        return True

    def is_system_issued(self) -> bool:
        """True for violations issued automatically (system user or AI detection)."""
        if self.issued_by is None or self.issued_by.is_system():
            return True
        return bool(self.context and "AI-detected" in self.context)


@dataclass(slots=True)
class ViolationDraft:
    """Moderator input for a new violation, before the backend assigns an id.

    ``restrictions`` of None means "use the type's default restrictions".
    ``expires_at`` of None means "derive from the policy table".
    """

    user_id: InternalUserID
    guild_id: GuildID
    type: ViolationType
    severity: ViolationSeverity
    reason: str
    issued_by: Optional[InternalUserID] = None
    policy_violated: Optional[PolicyType] = None
    restrictions: Optional[set[FeatureRestriction]] = None
    content_snapshot: Optional[str] = None
    context: Optional[str] = None
    evidence: Optional[str] = None
    expires_at: Optional[datetime] = None
    actions_applied: List[ViolationAction] = field(default_factory=list)


@dataclass(slots=True)
class AccountStandingData:
    """Derived summary of a user's violation history."""

    standing: AccountStanding
    active_violations: int
    total_violations: int
    severity_score: int
    restrictions: frozenset[FeatureRestriction] = frozenset()
    last_violation: Optional[datetime] = None
    next_expiration: Optional[datetime] = None


# --------------------------
# Wire parsing
# --------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ViolationParseError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ViolationParseError(f"Invalid timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _decode_json_field(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ViolationParseError(f"Invalid JSON field: {value!r}") from exc
    return value


def parse_restrictions(value: Any) -> frozenset[FeatureRestriction]:
    """Parse a restriction list given as a list or a JSON-encoded string.

    Unknown restriction names are dropped with a warning so a newer backend
    enum does not make the whole record unreadable.
    """
    decoded = _decode_json_field(value)
    if decoded is None:
        return frozenset()
    if not isinstance(decoded, (list, tuple, set, frozenset)):
        raise ViolationParseError(f"Restrictions must be a list, got {type(decoded).__name__}")

    restrictions: set[FeatureRestriction] = set()
    for raw in decoded:
        try:
            restrictions.add(raw if isinstance(raw, FeatureRestriction) else FeatureRestriction(str(raw)))
        except ValueError:
            logger.warning("[VIOLATION PARSE] Ignoring unknown restriction %r", raw)
    return frozenset(restrictions)


def parse_actions(value: Any) -> List[ViolationAction]:
    """Parse ``actionsApplied``: a list of dicts, a list of JSON strings, or one JSON string."""
    decoded = _decode_json_field(value)
    if not decoded:
        return []
    if not isinstance(decoded, list):
        raise ViolationParseError("actionsApplied must be a list")

    actions: List[ViolationAction] = []
    for entry in decoded:
        if isinstance(entry, str):
            entry = _decode_json_field(entry)
        if not isinstance(entry, Mapping):
            raise ViolationParseError(f"Invalid action entry: {entry!r}")
        try:
            action_type = ViolationActionType(entry["type"])
        except (KeyError, ValueError) as exc:
            raise ViolationParseError(f"Invalid action type in {entry!r}") from exc
        target = entry.get("target")
        actions.append(
            ViolationAction(
                type=action_type,
                applied=bool(entry.get("applied", False)),
                applied_at=parse_datetime(entry.get("appliedAt")),
                target=str(target) if target is not None else None,
            )
        )
    return actions


def _optional_internal_id(value: Any) -> Optional[InternalUserID]:
    if value is None:
        return None
    return InternalUserID(value)


def _optional_enum(enum_cls, value: Any):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        logger.debug("[VIOLATION PARSE] Unknown %s value %r", enum_cls.__name__, value)
        return None


def parse_violation(payload: Mapping[str, Any]) -> Violation:
    """Build a :class:`Violation` from a backend wire record.

    Raises:
        ViolationParseError: If a required field is missing or malformed.
    """
    if not isinstance(payload, Mapping):
        raise ViolationParseError(f"Violation record must be an object, got {type(payload).__name__}")

    try:
        violation_id = int(payload["id"])
        user_id = InternalUserID(payload["userId"])
        guild_id = GuildID(payload["guildId"])
        violation_type = ViolationType(payload["type"])
        severity = ViolationSeverity(payload["severity"])
    except KeyError as exc:
        raise ViolationParseError(f"Violation record missing field {exc.args[0]!r}") from exc
    except (TypeError, ValueError) as exc:
        raise ViolationParseError(f"Violation record has invalid identity/classification: {exc}") from exc

    issued_at = parse_datetime(payload.get("issuedAt"))
    if issued_at is None:
        raise ViolationParseError(f"Violation {violation_id} has no issuedAt")

    try:
        issued_by = _optional_internal_id(payload.get("issuedBy"))
        reviewed_by = _optional_internal_id(payload.get("reviewedBy"))
    except ValueError as exc:
        raise ViolationParseError(f"Violation {violation_id} has an invalid user reference: {exc}") from exc

    return Violation(
        id=violation_id,
        user_id=user_id,
        guild_id=guild_id,
        type=violation_type,
        severity=severity,
        reason=str(payload.get("reason") or ""),
        issued_at=issued_at,
        policy_violated=_optional_enum(PolicyType, payload.get("policyViolated")),
        content_snapshot=payload.get("contentSnapshot"),
        context=payload.get("context"),
        evidence=payload.get("evidence"),
        restrictions=parse_restrictions(payload.get("restrictions")),
        actions_applied=parse_actions(payload.get("actionsApplied")),
        issued_by=issued_by,
        expires_at=parse_datetime(payload.get("expiresAt")),
        expired_at=parse_datetime(payload.get("expiredAt")),
        review_requested=bool(payload.get("reviewRequested", False)),
        reviewed_by=reviewed_by,
        reviewed_at=parse_datetime(payload.get("reviewedAt")),
        review_outcome=payload.get("reviewOutcome"),
        review_notes=payload.get("reviewNotes"),
    )


def parse_violation_list(records: Iterable[Any]) -> List[Violation]:
    """Parse a list of wire records, skipping (and logging) malformed entries."""
    violations: List[Violation] = []
    for record in records or []:
        try:
            violations.append(parse_violation(record))
        except ViolationParseError as exc:
            logger.warning("[VIOLATION PARSE] Skipping malformed violation record: %s", exc)
    return violations

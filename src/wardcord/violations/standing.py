"""Account standing calculation. Pure functions, no I/O."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Mapping, Optional

from wardcord.configuration.app_configuration import (
    DEFAULT_SEVERITY_WEIGHTS,
    DEFAULT_STANDING_THRESHOLDS,
    validate_thresholds,
)
from wardcord.datatypes.violation_datatypes import (
    AccountStanding,
    AccountStandingData,
    FeatureRestriction,
    Violation,
    ViolationSeverity,
    utcnow,
)


def active_violations(violations: Iterable[Violation], now: Optional[datetime] = None) -> List[Violation]:
    now = now or utcnow()
    return [v for v in violations if not v.is_expired(now)]


def calculate_severity_score(
    violations: Iterable[Violation],
    weights: Optional[Mapping[ViolationSeverity, int]] = None,
) -> int:
    """Sum the configured weight of each violation's severity."""
    weights = weights or DEFAULT_SEVERITY_WEIGHTS
    return sum(int(weights.get(v.severity, 0)) for v in violations)


def standing_for_score(score: int, thresholds: Optional[Mapping[AccountStanding, int]] = None) -> AccountStanding:
    """Map a severity score to the highest tier whose threshold it reaches."""
    validated = validate_thresholds(dict(thresholds or DEFAULT_STANDING_THRESHOLDS))
    standing = AccountStanding.GOOD
    for tier, lower_bound in validated.items():
        if score >= lower_bound:
            standing = tier
    return standing


def calculate_standing(
    violations: Iterable[Violation],
    *,
    weights: Optional[Mapping[ViolationSeverity, int]] = None,
    thresholds: Optional[Mapping[AccountStanding, int]] = None,
    now: Optional[datetime] = None,
) -> AccountStandingData:
    """Derive a user's standing from their violation history.

    Only violations that are neither marked expired nor past ``expires_at``
    count towards the score. Raises ``ValueError`` if ``thresholds`` are not
    strictly increasing.
    """
    now = now or utcnow()
    history = list(violations)
    active = active_violations(history, now)

    score = calculate_severity_score(active, weights)
    restrictions: set[FeatureRestriction] = set()
    for violation in active:
        restrictions.update(violation.restrictions)

    upcoming = [v.expires_at for v in active if v.expires_at is not None]

    return AccountStandingData(
        standing=standing_for_score(score, thresholds),
        active_violations=len(active),
        total_violations=len(history),
        severity_score=score,
        restrictions=frozenset(restrictions),
        last_violation=max((v.issued_at for v in history), default=None),
        next_expiration=min(upcoming, default=None),
    )

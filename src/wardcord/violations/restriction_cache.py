"""
In-memory map of platform user id to active feature restrictions.

Enforcement handlers read this on every message, voice or interaction event,
so reads are a plain dictionary lookup. Mutations are synchronous and
therefore atomic on the event loop; multi-step flows that read the backend
before writing here are serialized per user by the warning system.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping

from wardcord.datatypes.discord_datatypes import UserID
from wardcord.datatypes.violation_datatypes import FeatureRestriction, RATE_LIMIT_RESTRICTIONS

_EMPTY: frozenset[FeatureRestriction] = frozenset()


class RestrictionCache:
    """Per-user restriction sets keyed by Discord user id."""

    def __init__(self) -> None:
        self._entries: Dict[UserID, frozenset[FeatureRestriction]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def get(self, user_id: UserID) -> frozenset[FeatureRestriction]:
        return self._entries.get(user_id, _EMPTY)

    def has(self, user_id: UserID, restriction: FeatureRestriction) -> bool:
        return restriction in self._entries.get(user_id, _EMPTY)

    def is_rate_limited(self, user_id: UserID) -> bool:
        return not RATE_LIMIT_RESTRICTIONS.isdisjoint(self._entries.get(user_id, _EMPTY))

    def merge(self, user_id: UserID, restrictions: Iterable[FeatureRestriction]) -> frozenset[FeatureRestriction]:
        """Union ``restrictions`` into the user's set and return the result."""
        merged = self._entries.get(user_id, _EMPTY) | frozenset(restrictions)
        if merged:
            self._entries[user_id] = merged
        return merged

    def release(
        self,
        user_id: UserID,
        restrictions: Iterable[FeatureRestriction],
        still_required: Iterable[FeatureRestriction] = (),
    ) -> frozenset[FeatureRestriction]:
        """Remove ``restrictions`` except those another active violation still requires."""
        removable = frozenset(restrictions) - frozenset(still_required)
        remaining = self._entries.get(user_id, _EMPTY) - removable
        self.replace(user_id, remaining)
        return remaining

    def replace(self, user_id: UserID, restrictions: Iterable[FeatureRestriction]) -> None:
        """Set the user's restrictions outright; an empty set removes the entry."""
        value = frozenset(restrictions)
        if value:
            self._entries[user_id] = value
        else:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def users(self) -> list[UserID]:
        return list(self._entries)

    def snapshot(self) -> Dict[str, list[str]]:
        """Serializable copy: decimal user id to sorted restriction names."""
        return {
            str(user_id): sorted(r.value for r in restrictions)
            for user_id, restrictions in self._entries.items()
        }

    def load(self, restrictions: Mapping[UserID, Iterable[FeatureRestriction]]) -> None:
        """Replace the whole cache with ``restrictions``."""
        self._entries = {}
        for user_id, values in restrictions.items():
            self.replace(user_id, values)

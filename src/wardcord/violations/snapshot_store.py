"""
Crash-recovery snapshot of the restriction cache.

The backend is authoritative; the snapshot only lets enforcement resume
immediately after a restart, before rehydration from the backend completes.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from wardcord.datatypes.discord_datatypes import UserID
from wardcord.datatypes.violation_datatypes import FeatureRestriction, parse_datetime, utcnow, ViolationParseError
from wardcord.util.logger import get_logger

logger = get_logger("snapshot_store")

SNAPSHOT_VERSION = 1


@dataclass(slots=True)
class RestrictionSnapshot:
    restrictions: Dict[UserID, frozenset[FeatureRestriction]] = field(default_factory=dict)
    saved_at: Optional[datetime] = None
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "restrictions": {
                str(user_id): sorted(r.value for r in values)
                for user_id, values in self.restrictions.items()
                if values
            },
            "savedAt": (self.saved_at or utcnow()).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestrictionSnapshot":
        """Parse a snapshot document. Unknown restriction names are skipped.

        Raises:
            ValueError: If the document is not a supported snapshot.
        """
        if not isinstance(data, dict):
            raise ValueError("Snapshot root must be an object")

        version = int(data.get("version", 1))
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version {version}")

        raw_restrictions = data.get("restrictions") or {}
        if not isinstance(raw_restrictions, dict):
            raise ValueError("Snapshot restrictions must be an object")

        restrictions: Dict[UserID, frozenset[FeatureRestriction]] = {}
        for raw_user, raw_values in raw_restrictions.items():
            values = set()
            for raw in raw_values or []:
                try:
                    values.add(FeatureRestriction(raw))
                except ValueError:
                    logger.warning("[SNAPSHOT] Skipping unknown restriction %r for user %s", raw, raw_user)
            if values:
                restrictions[UserID(raw_user)] = frozenset(values)

        try:
            saved_at = parse_datetime(data.get("savedAt"))
        except ViolationParseError:
            saved_at = None

        return cls(restrictions=restrictions, saved_at=saved_at, version=version)


class SnapshotStore:
    """Reads and writes :class:`RestrictionSnapshot` as JSON at ``path``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> Optional[RestrictionSnapshot]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("[SNAPSHOT] No snapshot at %s, starting fresh", self.path)
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("[SNAPSHOT] Could not read snapshot %s: %s", self.path, exc)
            return None

        try:
            return RestrictionSnapshot.from_dict(data)
        except (TypeError, ValueError) as exc:
            logger.warning("[SNAPSHOT] Ignoring corrupt snapshot %s: %s", self.path, exc)
            return None

    def _write(self, snapshot: RestrictionSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def load(self) -> Optional[RestrictionSnapshot]:
        """Return the stored snapshot, or None if it is missing or unreadable."""
        return await asyncio.to_thread(self._read)

    async def save(self, snapshot: RestrictionSnapshot) -> bool:
        """Atomically replace the snapshot file. Returns False (and logs) on I/O failure."""
        try:
            await asyncio.to_thread(self._write, snapshot)
        except OSError as exc:
            logger.error("[SNAPSHOT] Failed to save snapshot to %s: %s", self.path, exc)
            return False
        logger.debug("[SNAPSHOT] Saved %d restricted users to %s", len(snapshot.restrictions), self.path)
        return True

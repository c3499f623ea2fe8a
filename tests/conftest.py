"""
Pytest configuration and fixtures for Wardcord tests.
"""

import datetime
import itertools
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import discord  # noqa: E402

from wardcord.configuration.app_configuration import (  # noqa: E402
    DEFAULT_EXPIRATION_DAYS,
    DEFAULT_SEVERITY_WEIGHTS,
    DEFAULT_STANDING_THRESHOLDS,
)
from wardcord.datatypes.discord_datatypes import GuildID, InternalUserID, UserID  # noqa: E402
from wardcord.datatypes.violation_datatypes import (  # noqa: E402
    Violation,
    ViolationSeverity,
    ViolationType,
)
from wardcord.rpc.backend_client import BackendError, BackendUser  # noqa: E402

NOW = datetime.datetime(2025, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)
GUILD = 999
DISCORD_USER = 111
INTERNAL_USER = 7


class FakeBackend:
    """In-memory stand-in for BackendClient with switchable failures."""

    def __init__(self, clock=lambda: NOW):
        self.clock = clock
        self.violations = []
        self.users = {}
        self.issued_drafts = []
        self.expired = []
        self.suspensions = []
        self.fail_issue = False
        self.fail_list = False
        self.fail_expire_ids = set()
        self._ids = itertools.count(1)

    def add_user(self, internal_id, discord_id):
        self.users[InternalUserID(internal_id)] = UserID(discord_id)

    async def issue_violation(self, draft):
        if self.fail_issue:
            raise BackendError("moderation/violations/issue", "unavailable", status=503)
        self.issued_drafts.append(draft)
        violation = Violation(
            id=next(self._ids),
            user_id=draft.user_id,
            guild_id=draft.guild_id,
            type=draft.type,
            severity=draft.severity,
            reason=draft.reason,
            issued_at=self.clock(),
            policy_violated=draft.policy_violated,
            restrictions=frozenset(draft.restrictions or ()),
            issued_by=draft.issued_by,
            expires_at=draft.expires_at,
        )
        self.violations.append(violation)
        return violation

    async def list_violations(self, user_id, guild_id, include_expired=True, limit=None):
        if self.fail_list:
            raise BackendError("moderation/violations/list", "unavailable")
        return [
            v for v in self.violations
            if v.user_id == user_id and v.guild_id == guild_id and (include_expired or v.expired_at is None)
        ]

    async def expire_violation(self, violation_id, expired_by=None):
        if violation_id in self.fail_expire_ids:
            raise BackendError("moderation/violations/expire", "unavailable")
        self.expired.append((violation_id, expired_by))

    async def get_user_by_id(self, user_id):
        discord_id = self.users.get(user_id)
        return BackendUser(id=user_id, discord_id=discord_id) if discord_id else None

    async def get_user_by_discord_id(self, discord_id):
        for internal_id, known in self.users.items():
            if known == discord_id:
                return BackendUser(id=internal_id, discord_id=known)
        return None

    async def create_suspension(self, user_id, guild_id, reason, issued_by=None):
        self.suspensions.append((user_id, guild_id, reason, issued_by))

    async def close(self):
        pass


def build_violation(
    violation_id=1,
    *,
    user_id=INTERNAL_USER,
    guild_id=GUILD,
    violation_type=ViolationType.SPAM,
    severity=ViolationSeverity.LOW,
    restrictions=(),
    issued_at=None,
    expires_at=None,
    expired_at=None,
    reason="testing",
):
    return Violation(
        id=violation_id,
        user_id=InternalUserID(user_id),
        guild_id=GuildID(guild_id),
        type=violation_type,
        severity=severity,
        reason=reason,
        issued_at=issued_at or NOW - datetime.timedelta(days=1),
        restrictions=frozenset(restrictions),
        expires_at=expires_at,
        expired_at=expired_at,
    )


def build_member(member_id=DISCORD_USER, guild=None):
    member = MagicMock(spec=discord.Member)
    member.id = member_id
    member.bot = False
    member.system = False
    member.nick = None
    member.display_name = f"member-{member_id}"
    member.mention = f"<@{member_id}>"
    member.top_role = 1
    member.roles = []
    member.guild = guild
    member.send = AsyncMock()
    member.ban = AsyncMock()
    member.timeout = AsyncMock()
    member.edit = AsyncMock()
    member.move_to = AsyncMock()
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    return member


def build_guild(members=(), guild_id=GUILD, can_ban=True):
    guild = MagicMock()
    guild.id = guild_id
    guild.name = "Test Guild"
    guild.owner_id = 1
    guild.me = SimpleNamespace(guild_permissions=SimpleNamespace(ban_members=can_ban), top_role=10)
    guild.members = list(members)
    by_id = {m.id: m for m in members}
    guild.get_member = MagicMock(side_effect=by_id.get)
    guild.fetch_member = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "Unknown Member"))
    guild.get_channel = MagicMock(return_value=None)
    guild.get_role = MagicMock(return_value=None)
    for member in members:
        member.guild = guild
    return guild


@pytest.fixture
def config(tmp_path):
    return SimpleNamespace(
        default_expiration_days=dict(DEFAULT_EXPIRATION_DAYS),
        snapshot_path=tmp_path / "warning_system.json",
        severity_weights=dict(DEFAULT_SEVERITY_WEIGHTS),
        standing_thresholds=dict(DEFAULT_STANDING_THRESHOLDS),
        repeat_offense_window_days=90,
        max_timeout_days=28,
        audit_channel_id=None,
        appeal_url="https://example.com/appeal",
        rules_base_url="https://example.com",
        standing_roles={},
    )


@pytest.fixture
def backend():
    fake = FakeBackend()
    fake.add_user(INTERNAL_USER, DISCORD_USER)
    return fake


@pytest.fixture
def member():
    return build_member()


@pytest.fixture
def guild(member):
    return build_guild([member])


@pytest.fixture
def bot(guild):
    return SimpleNamespace(
        guilds=[guild],
        get_guild=lambda guild_id: guild if guild_id == guild.id else None,
    )


@pytest.fixture
def warning_system(bot, backend, config):
    from wardcord.violations.warning_system import WarningSystem

    return WarningSystem(bot, backend, config=config, clock=lambda: NOW)  # type: ignore[arg-type]

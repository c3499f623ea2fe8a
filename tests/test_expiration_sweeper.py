import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
from conftest import DISCORD_USER, NOW, build_violation

from wardcord.datatypes.discord_datatypes import UserID
from wardcord.datatypes.violation_datatypes import FeatureRestriction
from wardcord.scheduler.expiration_sweeper import ExpirationSweeper
from wardcord.violations.enforcement import MessageRateLimiter

DAY = datetime.timedelta(days=1)
USER = UserID(DISCORD_USER)


async def _prime(warning_system, backend, *violations):
    backend.violations.extend(violations)
    await warning_system.rehydrate()


@pytest.mark.asyncio
async def test_sweep_expires_only_due_violations(warning_system, backend):
    await _prime(
        warning_system,
        backend,
        build_violation(100, expires_at=NOW - DAY, restrictions={FeatureRestriction.MESSAGE_EMBED}),
        build_violation(101, expires_at=NOW + DAY, restrictions={FeatureRestriction.MESSAGE_LINK}),
        build_violation(102, restrictions={FeatureRestriction.VOICE_SPEAK}),
    )
    warning_system.restrictions.merge(USER, {FeatureRestriction.MESSAGE_EMBED})
    sweeper = ExpirationSweeper(warning_system, lambda: 60)

    assert await sweeper.sweep() == 1

    assert [violation_id for violation_id, _ in backend.expired] == [100]
    assert warning_system.restrictions.get(USER) == {FeatureRestriction.MESSAGE_LINK, FeatureRestriction.VOICE_SPEAK}
    assert await sweeper.sweep() == 0


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_sweep(warning_system, backend):
    await _prime(
        warning_system,
        backend,
        build_violation(100, expires_at=NOW - DAY, restrictions={FeatureRestriction.MESSAGE_EMBED}),
        build_violation(101, expires_at=NOW - DAY, restrictions={FeatureRestriction.MESSAGE_LINK}),
        build_violation(102, expires_at=NOW - DAY, restrictions={FeatureRestriction.VOICE_SPEAK}),
        build_violation(103, expires_at=NOW + DAY, restrictions={FeatureRestriction.MESSAGE_ATTACH}),
    )
    backend.fail_expire_ids.add(101)
    sweeper = ExpirationSweeper(warning_system, lambda: 60)

    assert await sweeper.sweep() == 2
    assert sorted(violation_id for violation_id, _ in backend.expired) == [100, 102]
    # Elapsed violations stop restricting even when the remote expire failed
    assert warning_system.restrictions.get(USER) == {FeatureRestriction.MESSAGE_ATTACH}

    backend.fail_expire_ids.clear()
    assert await sweeper.sweep() == 1
    assert sorted(violation_id for violation_id, _ in backend.expired) == [100, 101, 102]


@pytest.mark.asyncio
async def test_unexpected_exception_is_isolated(warning_system, backend, monkeypatch):
    await _prime(
        warning_system,
        backend,
        build_violation(100, expires_at=NOW - DAY),
        build_violation(101, expires_at=NOW - DAY),
    )
    original = warning_system.expire_violation

    async def flaky(user_id, guild_id, violation_id, **kwargs):
        if violation_id == 100:
            raise RuntimeError("boom")
        return await original(user_id, guild_id, violation_id, **kwargs)

    monkeypatch.setattr(warning_system, "expire_violation", flaky)
    sweeper = ExpirationSweeper(warning_system, lambda: 60)

    assert await sweeper.sweep() == 1


@pytest.mark.asyncio
async def test_snapshot_saved_once_per_productive_sweep(warning_system, backend):
    await _prime(
        warning_system,
        backend,
        build_violation(100, expires_at=NOW - DAY),
        build_violation(101, expires_at=NOW - DAY),
    )
    warning_system.save_snapshot = AsyncMock(return_value=True)
    sweeper = ExpirationSweeper(warning_system, lambda: 60)

    await sweeper.sweep()
    warning_system.save_snapshot.assert_awaited_once()

    await sweeper.sweep()
    warning_system.save_snapshot.assert_awaited_once()


@pytest.mark.asyncio
async def test_sweep_prunes_rate_limiter(warning_system):
    clock_value = [0.0]
    limiter = MessageRateLimiter(limit=1, window_seconds=1, clock=lambda: clock_value[0])
    limiter.hit(USER)
    clock_value[0] = 5.0
    sweeper = ExpirationSweeper(warning_system, lambda: 60, limiter)

    await sweeper.sweep()

    assert limiter.prune() == 0
    assert limiter.retry_after(USER) == 0


@pytest.mark.asyncio
async def test_start_runs_immediately_and_shutdown_cancels(warning_system):
    sweeper = ExpirationSweeper(warning_system, lambda: 3600)
    swept = asyncio.Event()

    async def fake_sweep():
        swept.set()
        return 0

    sweeper.sweep = fake_sweep  # type: ignore[assignment]
    sweeper.start()
    assert sweeper.running

    await asyncio.wait_for(swept.wait(), timeout=1)
    await sweeper.shutdown()
    assert not sweeper.running


@pytest.mark.asyncio
async def test_loop_survives_sweep_errors(warning_system):
    sweeper = ExpirationSweeper(warning_system, lambda: 0)
    calls = []

    async def failing_sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("transient")
        return 0

    sweeper.sweep = failing_sweep  # type: ignore[assignment]
    sweeper.start()
    for _ in range(20):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0)
    await sweeper.shutdown()

    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task(warning_system):
    sweeper = ExpirationSweeper(warning_system, lambda: 3600)
    sweeper.sweep = AsyncMock(return_value=0)  # type: ignore[assignment]
    sweeper.start()
    task = sweeper._task
    sweeper.start()
    assert sweeper._task is task
    await sweeper.shutdown()

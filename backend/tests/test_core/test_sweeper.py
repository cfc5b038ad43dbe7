import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from gatekeeper.container import Services
from gatekeeper.core.sweeper import PeriodicTask
from gatekeeper.models.base import utcnow
from gatekeeper.models.session import Session


@pytest.mark.asyncio
async def test_periodic_task_runs_until_stopped():
    calls = []

    async def job():
        calls.append(1)

    task = PeriodicTask("test-job", 0.01, job)
    task.start()
    assert task.running
    await asyncio.sleep(0.1)
    await task.stop()

    assert task.running is False
    assert len(calls) >= 2
    count = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == count


@pytest.mark.asyncio
async def test_failing_iteration_does_not_kill_the_loop():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")

    task = PeriodicTask("flaky", 0.01, flaky)
    task.start()
    await asyncio.sleep(0.1)
    await task.stop()
    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_stop_before_start_is_harmless():
    async def job():
        return None

    await PeriodicTask("idle", 1, job).stop()


@pytest.mark.asyncio
async def test_session_purge_job(services: Services):
    async with services.session_factory() as db:
        session, _ = await services.sessions.register(
            db, username="purge", email="purge@example.com", password="SecurePass123!"
        )
        await db.commit()

    purge = next(t for t in services.sweepers if t.name == "session-purge")
    assert await purge.run_once() == 0

    later = utcnow() + services.sessions.ttl + timedelta(seconds=1)
    services.sessions._clock = lambda: later
    assert await purge.run_once() == 1

    async with services.session_factory() as db:
        count = await db.execute(select(func.count()).select_from(Session))
        assert count.scalar_one() == 0


@pytest.mark.asyncio
async def test_rate_limit_eviction_job(services: Services):
    limiter = services.rate_limiter
    limiter.hit("ip:1.2.3.4")
    limiter.idle_seconds = -1

    eviction = next(t for t in services.sweepers if t.name == "rate-limit-eviction")
    assert await eviction.run_once() == 1
    assert len(limiter) == 0

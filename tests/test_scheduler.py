"""
Tests for the background task scheduler and its game jobs.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from fortune_city.models import Machine, MachineStatus, User
from fortune_city.scheduler import task_scheduler
from fortune_city.scheduler.task_scheduler import ScheduledTask, TaskScheduler
from fortune_city.services.machine_service import MachineService


async def test_scheduled_task_records_runs():
    calls = []

    async def job():
        calls.append(1)
        return "done"

    task = ScheduledTask("job", job, interval_seconds=60, run_immediately=True)
    assert task.should_run()

    assert await task.run() == "done"
    assert task.run_count == 1
    assert task.last_run is not None
    assert not task.should_run()


async def test_scheduled_task_records_errors():
    async def broken():
        raise RuntimeError("boom")

    task = ScheduledTask("broken", broken, interval_seconds=60, run_immediately=True)

    with pytest.raises(RuntimeError):
        await task.run()

    assert task.error_count == 1
    assert task.last_error == "boom"
    assert task.run_count == 0
    assert not task.should_run()


async def test_run_pending_tasks_isolates_failures():
    scheduler = TaskScheduler(loop_interval=1)
    results = []

    async def ok():
        results.append("ok")

    async def broken():
        raise RuntimeError("boom")

    scheduler.register_task("ok", ok, interval_seconds=60, run_immediately=True)
    scheduler.register_task("broken", broken, interval_seconds=60, run_immediately=True)
    scheduler.register_task("later", ok, interval_seconds=60)

    assert await scheduler.run_pending_tasks() == 2
    assert results == ["ok"]
    assert await scheduler.run_pending_tasks() == 0

    health = scheduler.health_check()
    assert health["total_tasks"] == 3
    assert health["tasks_with_errors"] == 1
    assert health["tasks"]["broken"]["last_error"] == "boom"
    assert health["healthy"] is False


async def test_disabled_task_is_skipped():
    scheduler = TaskScheduler(loop_interval=1)

    async def job():
        return None

    scheduler.register_task("job", job, interval_seconds=60, run_immediately=True)
    scheduler.disable_task("job")

    assert await scheduler.run_pending_tasks() == 0
    assert scheduler.health_check()["enabled_tasks"] == 0


def test_default_tasks_registered():
    scheduler = TaskScheduler(loop_interval=1)
    scheduler.register_default_tasks()

    assert set(scheduler.tasks) == {
        "expire_machines",
        "auto_collect",
        "reset_free_spins",
        "refresh_prices",
        "coin_box_notifications",
    }


async def test_expire_machines_job(session_maker):
    async with session_maker() as session:
        user = User(telegram_id="700001", username="expiring", referral_code="EXP00001")
        session.add(user)
        await session.flush()
        machine = await MachineService(session).create(user.id, 1)
        machine.expires_at -= timedelta(days=30)
        machine_id = machine.id
        await session.commit()

    assert await task_scheduler.expire_machines() == 1

    async with session_maker() as session:
        machine = await session.get(Machine, machine_id)
        assert machine.status == MachineStatus.EXPIRED.value


async def test_free_spins_reset_once_per_day(session_maker):
    async with session_maker() as session:
        session.add(User(telegram_id="700002", username="spinner", referral_code="SPN00001"))
        await session.commit()

    assert await task_scheduler.reset_free_spins_if_new_day() == 1
    assert await task_scheduler.reset_free_spins_if_new_day() == 0

    async with session_maker() as session:
        user = (await session.execute(
            select(User).where(User.telegram_id == "700002")
        )).scalar_one()
        assert user.free_spins_remaining == 3


async def test_refresh_prices_job():
    assert await task_scheduler.refresh_prices() == "150"

"""
Task scheduler for the periodic game jobs.

Every task opens its own session so one failing job never rolls back
another.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import func, select

import structlog

from fortune_city.core.config import settings
from fortune_city.core.database import get_async_session
from fortune_city.models.user import User
from fortune_city.services.auto_collect_service import AutoCollectService
from fortune_city.services.machine_service import MachineService
from fortune_city.services.price_oracle import get_price_oracle
from fortune_city.services.wheel_service import WheelService

logger = structlog.get_logger(__name__)


class ScheduledTask:
    """Represents a scheduled task."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.last_run: Optional[datetime] = None
        self.last_result: Any = None
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

        self.next_run = datetime.utcnow()
        if not run_immediately:
            self.next_run += timedelta(seconds=interval_seconds)

    def should_run(self, now: Optional[datetime] = None) -> bool:
        return self.enabled and (now or datetime.utcnow()) >= self.next_run

    def schedule_next_run(self) -> None:
        self.next_run = datetime.utcnow() + timedelta(seconds=self.interval_seconds)

    async def run(self) -> Any:
        """Execute the task; errors are recorded and re-raised."""
        start_time = datetime.utcnow()
        try:
            self.last_result = await self.func()
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            logger.error(
                "Task failed",
                task=self.name,
                error=str(e),
                error_count=self.error_count
            )
            raise
        finally:
            # A failed run still waits a full interval
            self.schedule_next_run()

        self.last_run = start_time
        self.run_count += 1
        logger.debug(
            "Task completed",
            task=self.name,
            duration=(datetime.utcnow() - start_time).total_seconds(),
            run_count=self.run_count
        )
        return self.last_result


class TaskScheduler:
    """Manages scheduled background tasks."""

    def __init__(self, loop_interval: Optional[int] = None):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self.loop_interval = loop_interval or settings.scheduler_loop_interval
        self._runner: Optional[asyncio.Task] = None

    def register_default_tasks(self) -> None:
        self.register_task(
            "expire_machines",
            expire_machines,
            interval_seconds=settings.expire_machines_interval,
            run_immediately=True
        )
        self.register_task(
            "auto_collect",
            run_auto_collect,
            interval_seconds=settings.auto_collect_interval
        )
        self.register_task(
            "reset_free_spins",
            reset_free_spins_if_new_day,
            interval_seconds=settings.free_spins_check_interval,
            run_immediately=True
        )
        self.register_task(
            "refresh_prices",
            refresh_prices,
            interval_seconds=settings.price_refresh_interval,
            run_immediately=True
        )
        self.register_task(
            "coin_box_notifications",
            notify_full_coin_boxes,
            interval_seconds=settings.coin_box_notify_interval
        )

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ) -> ScheduledTask:
        """Register a new scheduled task."""
        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately
        )
        self.tasks[name] = task
        logger.info("Registered task", task=name, interval=interval_seconds)
        return task

    def enable_task(self, name: str) -> None:
        if name in self.tasks:
            self.tasks[name].enabled = True
            logger.info("Enabled task", task=name)

    def disable_task(self, name: str) -> None:
        if name in self.tasks:
            self.tasks[name].enabled = False
            logger.info("Disabled task", task=name)

    async def run_pending_tasks(self) -> int:
        """Run every due task concurrently; returns how many ran."""
        pending = [task for task in self.tasks.values() if task.should_run()]
        if not pending:
            return 0

        results = await asyncio.gather(*(task.run() for task in pending), return_exceptions=True)
        for task, result in zip(pending, results):
            if isinstance(result, Exception):
                logger.warning("Scheduled task raised", task=task.name, error=str(result))
        return len(pending)

    async def run_forever(self) -> None:
        logger.info("Starting task scheduler", tasks=sorted(self.tasks))
        self.running = True

        while self.running:
            try:
                await self.run_pending_tasks()
                await asyncio.sleep(self.loop_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Task scheduler loop error", error=str(e))
                await asyncio.sleep(self.loop_interval)

        self.running = False
        logger.info("Task scheduler stopped")

    def start(self) -> asyncio.Task:
        """Run the loop in the background of the current event loop."""
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run_forever())
        return self._runner

    async def stop(self) -> None:
        logger.info("Stopping task scheduler")
        self.running = False
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None

    def health_check(self) -> Dict[str, Any]:
        """Get health status of task scheduler."""
        total_tasks = len(self.tasks)
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)

        return {
            "healthy": self.running and tasks_with_errors < total_tasks * 0.5,
            "running": self.running,
            "total_tasks": total_tasks,
            "enabled_tasks": sum(1 for task in self.tasks.values() if task.enabled),
            "tasks_with_errors": tasks_with_errors,
            "tasks": {
                name: {
                    "enabled": task.enabled,
                    "last_run": task.last_run.isoformat() if task.last_run else None,
                    "next_run": task.next_run.isoformat(),
                    "run_count": task.run_count,
                    "error_count": task.error_count,
                    "last_error": task.last_error,
                }
                for name, task in self.tasks.items()
            },
        }


# Task implementations

async def expire_machines() -> int:
    async with get_async_session() as session:
        expired = await MachineService(session).check_and_expire_machines()
    return len(expired)


async def run_auto_collect() -> Dict[str, Any]:
    async with get_async_session() as session:
        return await AutoCollectService(session).execute_for_all()


async def reset_free_spins_if_new_day() -> int:
    """Reset free spins once per UTC day, surviving restarts."""
    today = datetime.utcnow().date()
    async with get_async_session() as session:
        last_reset = (await session.execute(
            select(func.max(User.last_spin_reset_at))
        )).scalar_one_or_none()

        if last_reset is not None and last_reset.date() >= today:
            return 0
        return await WheelService(session).reset_daily_free_spins()


async def refresh_prices() -> str:
    price = await get_price_oracle().refresh()
    return str(price)


async def notify_full_coin_boxes() -> int:
    async with get_async_session() as session:
        return await MachineService(session).notify_full_coin_boxes()


_task_scheduler: Optional[TaskScheduler] = None


def get_task_scheduler() -> TaskScheduler:
    """Process-wide scheduler with the default tasks registered."""
    global _task_scheduler
    if _task_scheduler is None:
        _task_scheduler = TaskScheduler()
        _task_scheduler.register_default_tasks()
    return _task_scheduler


async def shutdown_task_scheduler() -> None:
    global _task_scheduler
    if _task_scheduler is not None:
        await _task_scheduler.stop()
        _task_scheduler = None

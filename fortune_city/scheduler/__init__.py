"""
Background jobs: machine expiry, collectors, free spins, prices and
coin box reminders.
"""

from .task_scheduler import ScheduledTask, TaskScheduler, get_task_scheduler, shutdown_task_scheduler

__all__ = ["ScheduledTask", "TaskScheduler", "get_task_scheduler", "shutdown_task_scheduler"]

"""Reminder scheduling: schedule types, recurrence, store, service, dispatch."""
from .executor import TaskDispatcher
from .models import Task, TaskCreate
from .schedule import compute_next_fire_at_ms, parse_duration, parse_time_of_day
from .service import SchedulerService, TaskStore
from .types import AfterSchedule, AtSchedule, PerSchedule, Schedule

__all__ = [
    "AfterSchedule",
    "AtSchedule",
    "PerSchedule",
    "Schedule",
    "SchedulerService",
    "Task",
    "TaskCreate",
    "TaskDispatcher",
    "TaskStore",
    "compute_next_fire_at_ms",
    "parse_duration",
    "parse_time_of_day",
]

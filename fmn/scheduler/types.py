"""Core type definitions for the reminder scheduler.

This module defines:
- Schedule types (after/per/at), a closed union
- Task lifecycle states
- Dispatch and scheduler status results
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


# ============== Schedule Types ==============

class ScheduleKind(str, Enum):
    """Kind of schedule."""
    AFTER = "after"     # One-time: fire once, a duration after creation
    PER = "per"         # Interval: fire every N milliseconds
    AT = "at"           # Time of day, once or daily


@dataclass(frozen=True)
class AfterSchedule:
    """One-time schedule, a fixed delay after creation."""
    kind: Literal["after"] = "after"
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "duration_ms": self.duration_ms}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AfterSchedule":
        return cls(duration_ms=int(data.get("duration_ms", 0)))


@dataclass(frozen=True)
class PerSchedule:
    """Interval-based schedule."""
    kind: Literal["per"] = "per"
    interval_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "interval_ms": self.interval_ms}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerSchedule":
        return cls(interval_ms=int(data.get("interval_ms", 0)))


@dataclass(frozen=True)
class AtSchedule:
    """Local time-of-day schedule, fired once or every day."""
    kind: Literal["at"] = "at"
    hour: int = 0
    minute: int = 0
    second: int = 0
    per_day: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "hour": self.hour,
            "minute": self.minute,
            "second": self.second,
            "per_day": self.per_day,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AtSchedule":
        return cls(
            hour=int(data.get("hour", 0)),
            minute=int(data.get("minute", 0)),
            second=int(data.get("second", 0)),
            per_day=bool(data.get("per_day", False)),
        )


# Union type for all schedule types
Schedule = AfterSchedule | PerSchedule | AtSchedule


def schedule_from_dict(data: dict[str, Any]) -> Schedule:
    """Create a Schedule from a dictionary."""
    kind = data.get("kind")
    if kind == ScheduleKind.AFTER.value:
        return AfterSchedule.from_dict(data)
    elif kind == ScheduleKind.PER.value:
        return PerSchedule.from_dict(data)
    elif kind == ScheduleKind.AT.value:
        return AtSchedule.from_dict(data)
    else:
        raise ValueError(f"Unknown schedule kind: {kind}")


# ============== Task State ==============

class TaskState(str, Enum):
    """Scheduler-side state of a task."""
    PENDING = "pending"     # Waiting for next_fire_at
    FIRING = "firing"       # Being dispatched and rescheduled
    REMOVED = "removed"     # Exhausted or cancelled


# ============== Result Types ==============

class RunStatus(str, Enum):
    """Status of a single collaborator call."""
    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


@dataclass
class DispatchResult:
    """Outcome of dispatching one due task."""
    task_id: int
    notification: RunStatus = RunStatus.SKIPPED
    sound: RunStatus = RunStatus.SKIPPED
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "notification": self.notification.value,
            "sound": self.sound.value,
            "errors": list(self.errors),
        }


@dataclass
class SchedulerStatus:
    """Status of the scheduler service."""
    running: bool
    tasks_total: int
    next_fire_at_ms: int | None = None
    dispatches_in_flight: int = 0

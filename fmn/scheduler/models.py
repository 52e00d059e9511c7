"""Data models for reminder tasks."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .schedule import schedule_to_human
from .types import Schedule, AfterSchedule, schedule_from_dict


def format_ms(ts_ms: int | None) -> str:
    if ts_ms is None:
        return "-"
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class Task:
    """A reminder task.

    Everything except ``next_fire_at_ms`` and ``last_fire_at_ms`` is fixed at
    creation time.
    """
    # Identity
    id: int
    message: str

    # Schedule configuration
    schedule: Schedule = field(default_factory=AfterSchedule)

    # Attachments
    sound_path: str | None = None
    image_path: str | None = None

    # Timestamps (ms since epoch)
    created_at_ms: int = 0
    next_fire_at_ms: int | None = None
    last_fire_at_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML/JSON serialization."""
        return {
            "id": self.id,
            "message": self.message,
            "schedule": self.schedule.to_dict(),
            "sound_path": self.sound_path,
            "image_path": self.image_path,
            "created_at_ms": self.created_at_ms,
            "next_fire_at_ms": self.next_fire_at_ms,
            "last_fire_at_ms": self.last_fire_at_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Create from dictionary."""
        next_fire = data.get("next_fire_at_ms")
        last_fire = data.get("last_fire_at_ms")
        return cls(
            id=int(data["id"]),
            message=str(data["message"]),
            schedule=schedule_from_dict(data["schedule"]),
            sound_path=data.get("sound_path"),
            image_path=data.get("image_path"),
            created_at_ms=int(data.get("created_at_ms", 0)),
            next_fire_at_ms=int(next_fire) if next_fire is not None else None,
            last_fire_at_ms=int(last_fire) if last_fire is not None else None,
        )

    def describe(self) -> str:
        """One-line summary used by logs and the CLI."""
        return (
            f"#{self.id} [{schedule_to_human(self.schedule)}] "
            f"next {format_ms(self.next_fire_at_ms)}: {self.message}"
        )


@dataclass
class TaskCreate:
    """Request to create a new task (already validated)."""
    message: str
    schedule: Schedule
    sound_path: str | None = None
    image_path: str | None = None

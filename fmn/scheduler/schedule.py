"""Schedule calculation utilities.

Computes next fire times for the three schedule kinds and parses the
duration / time-of-day strings accepted from clients.
"""
import re
import time
from datetime import datetime, timedelta

from ..errors import ValidationError
from .types import (
    Schedule,
    AfterSchedule,
    PerSchedule,
    AtSchedule,
)

MS_PER_SECOND = 1000
MS_PER_DAY = 24 * 3600 * MS_PER_SECOND

_DURATION_RE = re.compile(
    r"^(?:(?P<day>\d+)d)?(?:(?P<hour>\d+)h)?(?:(?P<minute>\d+)m)?(?:(?P<second>\d+)s)?$"
)
_TIME_OF_DAY_RE = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?$")


def now_ms() -> int:
    """Get current timestamp in milliseconds."""
    return int(time.time() * 1000)


def compute_next_fire_at_ms(
    schedule: Schedule,
    created_at_ms: int,
    current_ms: int | None = None,
    last_fire_at_ms: int | None = None,
) -> int | None:
    """Compute the next fire time in milliseconds.

    Args:
        schedule: The schedule configuration
        created_at_ms: Creation time of the task
        current_ms: Reference timestamp in ms (defaults to now)
        last_fire_at_ms: Occurrence fired most recently, if any

    Returns:
        Next fire timestamp in milliseconds, or None if exhausted
    """
    if current_ms is None:
        current_ms = now_ms()

    if isinstance(schedule, AfterSchedule):
        return _compute_after_next(schedule, created_at_ms, last_fire_at_ms)
    elif isinstance(schedule, PerSchedule):
        return _compute_per_next(schedule, created_at_ms, current_ms, last_fire_at_ms)
    elif isinstance(schedule, AtSchedule):
        return _compute_at_next(schedule, current_ms, last_fire_at_ms)
    raise TypeError(f"Unsupported schedule: {schedule!r}")


def _compute_after_next(
    schedule: AfterSchedule,
    created_at_ms: int,
    last_fire_at_ms: int | None,
) -> int | None:
    """Compute next fire for after (one-time) schedule."""
    if last_fire_at_ms is not None:
        return None
    return created_at_ms + schedule.duration_ms


def _compute_per_next(
    schedule: PerSchedule,
    created_at_ms: int,
    current_ms: int,
    last_fire_at_ms: int | None,
) -> int:
    """Compute next fire for interval schedule."""
    if schedule.interval_ms <= 0:
        raise ValueError("interval must be positive")

    if last_fire_at_ms is None:
        return created_at_ms + schedule.interval_ms

    next_fire = last_fire_at_ms + schedule.interval_ms

    # Missed periods collapse into the next aligned occurrence
    if next_fire <= current_ms:
        missed = (current_ms - next_fire) // schedule.interval_ms + 1
        next_fire += missed * schedule.interval_ms

    return next_fire


def _compute_at_next(
    schedule: AtSchedule,
    current_ms: int,
    last_fire_at_ms: int | None,
) -> int | None:
    """Compute next fire for time-of-day schedule (local time)."""
    if last_fire_at_ms is not None:
        if not schedule.per_day:
            return None
        # Never hand out the occurrence that just fired
        current_ms = max(current_ms, last_fire_at_ms + 1)

    reference = datetime.fromtimestamp(current_ms // MS_PER_SECOND)
    candidate = reference.replace(
        hour=schedule.hour,
        minute=schedule.minute,
        second=schedule.second,
        microsecond=0,
    )
    candidate_ms = int(candidate.timestamp()) * MS_PER_SECOND
    # An exact match counts as still in the future
    if candidate_ms < current_ms:
        candidate_ms = int((candidate + timedelta(days=1)).timestamp()) * MS_PER_SECOND

    return candidate_ms


# ============== Parsing ==============

def parse_duration(duration: str) -> int:
    """Parse a duration such as ``1d2h``, ``30s`` or ``55m``.

    Args:
        duration: Duration string, components ordered d/h/m/s

    Returns:
        Duration in milliseconds (always positive)
    """
    text = (duration or "").strip()
    match = _DURATION_RE.match(text)
    if not text or match is None:
        raise ValidationError(
            f"invalid duration {duration!r}; valid examples: 1d1h1m1s, 2h, 30s, 55m"
        )

    parts = {name: int(value or 0) for name, value in match.groupdict().items()}
    seconds = parts["day"] * 86400 + parts["hour"] * 3600 + parts["minute"] * 60 + parts["second"]
    if seconds <= 0:
        raise ValidationError(f"duration {duration!r} must be greater than zero")
    return seconds * MS_PER_SECOND


def parse_time_of_day(value: str) -> tuple[int, int, int]:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into (hour, minute, second)."""
    match = _TIME_OF_DAY_RE.match((value or "").strip())
    if match is None:
        raise ValidationError(
            f"invalid time {value!r}; valid examples: 13:11, 23:01:59"
        )
    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    second = int(match.group("second") or 0)
    if hour > 23 or minute > 59 or second > 59:
        raise ValidationError(f"time {value!r} is out of range")
    return hour, minute, second


def validate_schedule(schedule: Schedule) -> None:
    """Reject schedules that can never fire sensibly."""
    if isinstance(schedule, AfterSchedule):
        if schedule.duration_ms <= 0:
            raise ValidationError("after <duration> must be greater than zero")
    elif isinstance(schedule, PerSchedule):
        if schedule.interval_ms <= 0:
            raise ValidationError("per <duration> must be greater than zero")
    elif isinstance(schedule, AtSchedule):
        if not (0 <= schedule.hour <= 23 and 0 <= schedule.minute <= 59 and 0 <= schedule.second <= 59):
            raise ValidationError("at <time> is out of range")
    else:
        raise TypeError(f"Unsupported schedule: {schedule!r}")


# ============== Display ==============

def duration_to_human(duration_ms: int) -> str:
    """Render milliseconds in the compact ``1d2h3m4s`` form."""
    seconds = duration_ms // MS_PER_SECOND
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    parts = []
    for amount, unit in ((days, "d"), (hours, "h"), (minutes, "m"), (seconds, "s")):
        if amount:
            parts.append(f"{amount}{unit}")
    return "".join(parts) or "0s"


def schedule_to_human(schedule: Schedule) -> str:
    """Convert schedule to human-readable description."""
    if isinstance(schedule, AfterSchedule):
        return f"after {duration_to_human(schedule.duration_ms)}"
    elif isinstance(schedule, PerSchedule):
        return f"every {duration_to_human(schedule.interval_ms)}"
    elif isinstance(schedule, AtSchedule):
        clock = f"{schedule.hour:02d}:{schedule.minute:02d}"
        if schedule.second:
            clock += f":{schedule.second:02d}"
        return f"at {clock} daily" if schedule.per_day else f"at {clock}"
    return "unknown schedule"

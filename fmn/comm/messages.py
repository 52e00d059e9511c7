"""Wire messages exchanged between ``fmn`` and ``fmn-daemon``.

Every datagram carries exactly one UTF-8 JSON object. Requests are a union
discriminated on ``kind``; every request gets one Response back.
"""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import TransportError
from ..scheduler.models import Task, TaskCreate
from ..scheduler.schedule import parse_duration, parse_time_of_day, schedule_to_human
from ..scheduler.types import AfterSchedule, AtSchedule, PerSchedule

# Largest UDP payload over IPv4
MAX_DATAGRAM_SIZE = 65507


# ============== Schedule specs ==============

class AfterSpec(BaseModel):
    """Fire once, ``duration`` from now."""

    kind: Literal["after"] = "after"
    duration: str = Field(..., description="Duration such as 1d2h3m4s")

    def to_schedule(self) -> AfterSchedule:
        return AfterSchedule(duration_ms=parse_duration(self.duration))


class PerSpec(BaseModel):
    """Fire every ``interval``."""

    kind: Literal["per"] = "per"
    interval: str = Field(..., description="Interval such as 1h or 30m")

    def to_schedule(self) -> PerSchedule:
        return PerSchedule(interval_ms=parse_duration(self.interval))


class AtSpec(BaseModel):
    """Fire at a local time of day, once or every day."""

    kind: Literal["at"] = "at"
    time: str = Field(..., description="HH:MM or HH:MM:SS")
    per_day: bool = False

    def to_schedule(self) -> AtSchedule:
        hour, minute, second = parse_time_of_day(self.time)
        return AtSchedule(hour=hour, minute=minute, second=second, per_day=self.per_day)


ScheduleSpec = Annotated[Union[AfterSpec, PerSpec, AtSpec], Field(discriminator="kind")]


# ============== Requests ==============

class AddRequest(BaseModel):
    """Register a new task."""

    kind: Literal["add"] = "add"
    message: str = Field(..., min_length=1, max_length=2000)
    schedule: ScheduleSpec
    sound_path: str | None = None
    image_path: str | None = None

    def to_create(self) -> TaskCreate:
        """Parse the schedule strings; raises ValidationError."""
        return TaskCreate(
            message=self.message,
            schedule=self.schedule.to_schedule(),
            sound_path=self.sound_path,
            image_path=self.image_path,
        )


class RemoveRequest(BaseModel):
    """Delete a task by id."""

    kind: Literal["remove"] = "remove"
    task_id: int = Field(..., ge=1)


class ListRequest(BaseModel):
    """Return every pending task."""

    kind: Literal["list"] = "list"


Request = Annotated[Union[AddRequest, RemoveRequest, ListRequest], Field(discriminator="kind")]

_request_adapter = TypeAdapter(Request)


# ============== Responses ==============

class TaskView(BaseModel):
    """Task as shown to clients."""

    id: int
    message: str
    schedule: dict[str, Any]
    schedule_text: str
    sound_path: str | None = None
    image_path: str | None = None
    created_at_ms: int
    next_fire_at_ms: int | None = None
    last_fire_at_ms: int | None = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskView":
        return cls(
            id=task.id,
            message=task.message,
            schedule=task.schedule.to_dict(),
            schedule_text=schedule_to_human(task.schedule),
            sound_path=task.sound_path,
            image_path=task.image_path,
            created_at_ms=task.created_at_ms,
            next_fire_at_ms=task.next_fire_at_ms,
            last_fire_at_ms=task.last_fire_at_ms,
        )


class Response(BaseModel):
    """Reply to any request."""

    ok: bool
    error: str | None = None
    task: TaskView | None = None
    tasks: list[TaskView] = Field(default_factory=list)

    @classmethod
    def success(cls, task: Task | None = None, tasks: list[Task] | None = None) -> "Response":
        return cls(
            ok=True,
            task=TaskView.from_task(task) if task is not None else None,
            tasks=[TaskView.from_task(t) for t in tasks or []],
        )

    @classmethod
    def failure(cls, error: str) -> "Response":
        return cls(ok=False, error=error)


# ============== Codec ==============

def _describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "request"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def encode_request(request: AddRequest | RemoveRequest | ListRequest) -> bytes:
    return request.model_dump_json().encode("utf-8")


def decode_request(data: bytes) -> AddRequest | RemoveRequest | ListRequest:
    """Parse one request datagram; raises TransportError."""
    try:
        return _request_adapter.validate_json(data)
    except PydanticValidationError as e:
        raise TransportError(f"malformed request: {_describe_errors(e)}") from e


def encode_response(response: Response) -> bytes:
    return response.model_dump_json().encode("utf-8")


def decode_response(data: bytes) -> Response:
    """Parse one reply datagram; raises TransportError."""
    try:
        return Response.model_validate_json(data)
    except PydanticValidationError as e:
        raise TransportError(f"malformed response: {_describe_errors(e)}") from e


"""Shared fixtures and fakes for the test suite."""
import asyncio
import os
import sys
from datetime import datetime

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from fmn.scheduler.models import Task
from fmn.scheduler.service import SchedulerService, TaskStore
from fmn.scheduler.types import DispatchResult, RunStatus

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def local_ms(*args) -> int:
    """Local wall-clock datetime -> epoch milliseconds."""
    return int(datetime(*args).timestamp()) * 1000


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, now_ms: int):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, delta_ms: int) -> int:
        self.now_ms += delta_ms
        return self.now_ms

    def set(self, now_ms: int) -> None:
        self.now_ms = now_ms


class RecordingDispatcher:
    """Dispatcher double that records fired tasks and can fail on demand."""

    def __init__(self, fail_ids: set[int] | None = None):
        self.fired: list[Task] = []
        self.fail_ids = fail_ids or set()
        self.fired_event = asyncio.Event()

    @property
    def fired_ids(self) -> list[int]:
        return [t.id for t in self.fired]

    async def dispatch(self, task: Task) -> DispatchResult:
        self.fired.append(task)
        self.fired_event.set()
        if task.id in self.fail_ids:
            raise RuntimeError(f"notification daemon unavailable for {task.id}")
        return DispatchResult(task_id=task.id, notification=RunStatus.OK)


@pytest.fixture
def clock():
    # Wednesday 2026-06-10 19:00 local time
    return FakeClock(local_ms(2026, 6, 10, 19, 0))


@pytest.fixture
def tasks_path(tmp_path):
    return tmp_path / "tasks.yaml"


@pytest.fixture
def store(tasks_path):
    return TaskStore(tasks_path)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(store, dispatcher, clock):
    return SchedulerService(store=store, dispatcher=dispatcher, clock=clock)

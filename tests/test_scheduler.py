"""Tests for the scheduler service."""
import asyncio

import pytest
import yaml

from conftest import DAY_MS, HOUR_MS, MINUTE_MS, RecordingDispatcher, local_ms
from fmn.errors import NotFoundError, PersistenceError, ValidationError
from fmn.scheduler.models import TaskCreate
from fmn.scheduler.schedule import compute_next_fire_at_ms
from fmn.scheduler.service import SchedulerService, TaskStore
from fmn.scheduler.types import AfterSchedule, AtSchedule, PerSchedule, TaskState


async def fire_at(service: SchedulerService, clock, when_ms: int):
    """Move the clock and run one firing pass to completion."""
    clock.set(when_ms)
    records = await service.fire_due_tasks()
    await service.wait_for_dispatches(timeout=1)
    return records


class TestSchedulerFiring:
    """Firing behaviour driven by a fake clock."""

    @pytest.mark.asyncio
    async def test_after_fires_once_and_is_removed(self, service, store, dispatcher, clock, tasks_path):
        await service.load()
        start = clock()
        task = await service.add_task(TaskCreate("tea is ready", AfterSchedule(duration_ms=5 * MINUTE_MS)))
        assert task.next_fire_at_ms == start + 5 * MINUTE_MS

        assert await fire_at(service, clock, start + 5 * MINUTE_MS - 1) == []
        records = await fire_at(service, clock, start + 5 * MINUTE_MS)
        assert [r.state for r in records] == [TaskState.REMOVED]
        assert dispatcher.fired_ids == [task.id]

        await fire_at(service, clock, start + DAY_MS)
        assert dispatcher.fired_ids == [task.id]
        assert await service.list_tasks() == []

        reloaded = TaskStore(tasks_path)
        assert reloaded.load() == []

    @pytest.mark.asyncio
    async def test_at_once_later_today(self, service, dispatcher, clock):
        await service.load()
        task = await service.add_task(TaskCreate("call home", AtSchedule(hour=19, minute=30)))

        assert service.next_wake_at_ms() == local_ms(2026, 6, 10, 19, 30)

        await fire_at(service, clock, local_ms(2026, 6, 10, 19, 30))
        await fire_at(service, clock, local_ms(2026, 6, 11, 19, 30))
        assert dispatcher.fired_ids == [task.id]
        assert service.next_wake_at_ms() is None

    @pytest.mark.asyncio
    async def test_at_daily_every_day(self, service, dispatcher, clock):
        await service.load()
        task = await service.add_task(TaskCreate("journal", AtSchedule(hour=19, minute=30, per_day=True)))

        fired_at = []
        for day in (10, 11, 12):
            records = await fire_at(service, clock, local_ms(2026, 6, day, 19, 30))
            fired_at.extend(r.fired_at_ms for r in records)

        assert dispatcher.fired_ids == [task.id] * 3
        assert fired_at[1] - fired_at[0] == DAY_MS
        assert fired_at[2] - fired_at[1] == DAY_MS
        assert service.next_wake_at_ms() == local_ms(2026, 6, 13, 19, 30)

    @pytest.mark.asyncio
    async def test_per_fires_every_interval(self, service, dispatcher, clock):
        await service.load()
        start = clock()
        task = await service.add_task(TaskCreate("drink water", PerSchedule(interval_ms=HOUR_MS)))

        fired_at = []
        for k in (1, 2, 3):
            records = await fire_at(service, clock, start + k * HOUR_MS)
            fired_at.extend(r.fired_at_ms for r in records)

        assert fired_at == [start + HOUR_MS, start + 2 * HOUR_MS, start + 3 * HOUR_MS]
        assert dispatcher.fired_ids == [task.id] * 3
        stored = await service.get_task(task.id)
        assert stored.last_fire_at_ms == start + 3 * HOUR_MS
        assert stored.next_fire_at_ms == start + 4 * HOUR_MS

    @pytest.mark.asyncio
    async def test_per_catch_up_fires_once(self, service, dispatcher, clock):
        await service.load()
        start = clock()
        await service.add_task(TaskCreate("drink water", PerSchedule(interval_ms=HOUR_MS)))

        records = await fire_at(service, clock, start + 3 * HOUR_MS + 10 * MINUTE_MS)

        assert len(records) == 1
        assert len(dispatcher.fired) == 1
        assert records[0].next_fire_at_ms == start + 4 * HOUR_MS

    @pytest.mark.asyncio
    async def test_same_instant_in_id_order_despite_failure(self, store, clock):
        dispatcher = RecordingDispatcher(fail_ids={1})
        service = SchedulerService(store=store, dispatcher=dispatcher, clock=clock)
        await service.load()
        first = await service.add_task(TaskCreate("first", AfterSchedule(duration_ms=MINUTE_MS)))
        second = await service.add_task(TaskCreate("second", AfterSchedule(duration_ms=MINUTE_MS)))

        records = await fire_at(service, clock, clock() + MINUTE_MS)

        assert [r.task.id for r in records] == [first.id, second.id]
        assert dispatcher.fired_ids == [first.id, second.id]
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_removed_task_never_fires(self, service, dispatcher, clock):
        await service.load()
        task = await service.add_task(TaskCreate("cancelled", AfterSchedule(duration_ms=MINUTE_MS)))

        removed = await service.remove_task(task.id)
        assert removed.id == task.id

        await fire_at(service, clock, clock() + HOUR_MS)
        assert dispatcher.fired == []
        assert service.next_wake_at_ms() is None

    @pytest.mark.asyncio
    async def test_remove_unknown_twice(self, service, tasks_path):
        await service.load()
        await service.add_task(TaskCreate("kept", AfterSchedule(duration_ms=MINUTE_MS)))
        before = tasks_path.read_bytes()

        for _ in range(2):
            with pytest.raises(NotFoundError):
                await service.remove_task(999)
        assert tasks_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_persistence_failure_after_fire(self, service, store, dispatcher, clock):
        await service.load()
        start = clock()
        task = await service.add_task(TaskCreate("drink water", PerSchedule(interval_ms=HOUR_MS)))

        def failing_write():
            raise PersistenceError("disk full")

        store._write = failing_write
        await fire_at(service, clock, start + HOUR_MS)
        await fire_at(service, clock, start + 2 * HOUR_MS)

        assert dispatcher.fired_ids == [task.id]

    @pytest.mark.asyncio
    async def test_reschedule_failure_does_not_abort_pass(self, service, store, dispatcher, clock, monkeypatch):
        await service.load()
        start = clock()
        broken = await service.add_task(TaskCreate("broken", PerSchedule(interval_ms=HOUR_MS)))
        healthy = await service.add_task(TaskCreate("healthy", AfterSchedule(duration_ms=HOUR_MS)))

        real_compute = compute_next_fire_at_ms

        def compute(schedule, *args, **kwargs):
            if isinstance(schedule, PerSchedule):
                raise ValueError("interval must be positive")
            return real_compute(schedule, *args, **kwargs)

        monkeypatch.setattr("fmn.scheduler.service.service.compute_next_fire_at_ms", compute)
        records = await fire_at(service, clock, start + HOUR_MS)

        assert dispatcher.fired_ids == [broken.id, healthy.id]
        assert [r.state for r in records] == [TaskState.REMOVED, TaskState.REMOVED]
        assert len(store) == 0


class TestSchedulerStartup:
    """Loading task files that cannot be scheduled."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "schedule",
        [
            {"kind": "per", "interval_ms": 0},
            {"kind": "at", "hour": 25, "minute": 0, "second": 0, "per_day": False},
        ],
    )
    async def test_unfireable_task_file(self, service, dispatcher, clock, tasks_path, schedule):
        tasks = [
            {"id": 1, "message": "bad", "schedule": schedule, "next_fire_at_ms": None},
            {"id": 2, "message": "good", "schedule": {"kind": "per", "interval_ms": HOUR_MS}},
        ]
        tasks_path.write_text(yaml.safe_dump({"next_id": 3, "tasks": tasks}), encoding="utf-8")

        await service.load()

        assert service.next_wake_at_ms() is None
        assert await service.list_tasks() == []
        assert tasks_path.with_name("tasks.yaml.corrupt").exists()

        await fire_at(service, clock, clock() + DAY_MS)
        assert dispatcher.fired == []

    @pytest.mark.asyncio
    async def test_unschedulable_task_is_left_unindexed(self, service, store, clock, tasks_path, monkeypatch):
        entry = {
            "id": 1,
            "message": "drink water",
            "schedule": {"kind": "per", "interval_ms": HOUR_MS},
            "created_at_ms": clock(),
            "next_fire_at_ms": None,
        }
        tasks_path.write_text(yaml.safe_dump({"next_id": 2, "tasks": [entry]}), encoding="utf-8")

        def compute(*args, **kwargs):
            raise ValueError("interval must be positive")

        monkeypatch.setattr("fmn.scheduler.service.service.compute_next_fire_at_ms", compute)
        await service.load()

        assert service.next_wake_at_ms() is None
        assert 1 in store


class TestSchedulerTasks:
    """Add / list / restart behaviour."""

    @pytest.mark.asyncio
    async def test_add_rejects_empty_message(self, service, store):
        await service.load()
        with pytest.raises(ValidationError):
            await service.add_task(TaskCreate("   ", AfterSchedule(duration_ms=MINUTE_MS)))
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_add_rejects_zero_duration(self, service, store):
        await service.load()
        with pytest.raises(ValidationError):
            await service.add_task(TaskCreate("now", PerSchedule(interval_ms=0)))
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_default_attachments(self, store, dispatcher, clock):
        service = SchedulerService(
            store=store,
            dispatcher=dispatcher,
            clock=clock,
            default_sound_path="/usr/share/sounds/bell.wav",
            default_image_path="/usr/share/icons/bell.png",
        )
        await service.load()

        plain = await service.add_task(TaskCreate("plain", AfterSchedule(duration_ms=MINUTE_MS)))
        custom = await service.add_task(
            TaskCreate("custom", AfterSchedule(duration_ms=MINUTE_MS), sound_path="/tmp/mine.wav")
        )

        assert plain.sound_path == "/usr/share/sounds/bell.wav"
        assert plain.image_path == "/usr/share/icons/bell.png"
        assert custom.sound_path == "/tmp/mine.wav"

    @pytest.mark.asyncio
    async def test_ids_increase(self, service):
        await service.load()
        ids = []
        for message in ("a", "b", "c"):
            task = await service.add_task(TaskCreate(message, AfterSchedule(duration_ms=MINUTE_MS)))
            ids.append(task.id)
        assert ids == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_schedule_survives_restart(self, service, dispatcher, clock, tasks_path):
        await service.load()
        start = clock()
        task = await service.add_task(TaskCreate("drink water", PerSchedule(interval_ms=HOUR_MS)))
        await fire_at(service, clock, start + HOUR_MS)

        restarted = SchedulerService(store=TaskStore(tasks_path), dispatcher=dispatcher, clock=clock)
        await restarted.load()

        assert restarted.next_wake_at_ms() == start + 2 * HOUR_MS
        stored = await restarted.get_task(task.id)
        assert stored.last_fire_at_ms == start + HOUR_MS

    @pytest.mark.asyncio
    async def test_overdue_task_fires_after_restart(self, service, clock, tasks_path):
        await service.load()
        start = clock()
        task = await service.add_task(TaskCreate("missed", AfterSchedule(duration_ms=MINUTE_MS)))

        dispatcher = RecordingDispatcher()
        clock.set(start + HOUR_MS)
        restarted = SchedulerService(store=TaskStore(tasks_path), dispatcher=dispatcher, clock=clock)
        await restarted.load()
        await restarted.fire_due_tasks()
        await restarted.wait_for_dispatches(timeout=1)

        assert dispatcher.fired_ids == [task.id]
        assert await restarted.list_tasks() == []

    @pytest.mark.asyncio
    async def test_status(self, service, clock):
        await service.load()
        task = await service.add_task(TaskCreate("x", AfterSchedule(duration_ms=MINUTE_MS)))

        status = service.status()
        assert status.running is False
        assert status.tasks_total == 1
        assert status.next_fire_at_ms == task.next_fire_at_ms


class TestSchedulerLoop:
    """The real timer loop on the real clock."""

    @pytest.mark.asyncio
    async def test_add_wakes_sleeping_loop(self, store):
        dispatcher = RecordingDispatcher()
        service = SchedulerService(store=store, dispatcher=dispatcher, max_sleep_seconds=60)
        await service.start()
        try:
            # Loop is now sleeping for max_sleep with an empty index
            await asyncio.sleep(0.05)
            task = await service.add_task(TaskCreate("soon", AfterSchedule(duration_ms=100)))
            await asyncio.wait_for(dispatcher.fired_event.wait(), timeout=5)
        finally:
            await service.stop()

        assert dispatcher.fired_ids == [task.id]
        assert not service.running

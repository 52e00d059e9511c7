"""Scheduler service: the wait/fire loop over the pending-task index.

One asyncio task owns the timer. It sleeps until the earliest
``next_fire_at_ms`` or until a mutation sets the wake event, fires every due
task in (next_fire_at, id) order, and writes the post-fire state back to the
store. Store mutation and index updates happen under a single lock.
"""
import asyncio
import heapq
from dataclasses import dataclass, replace
from typing import Callable

from loguru import logger

from ...errors import NotFoundError, PersistenceError, ValidationError
from ..executor import TaskDispatcher
from ..models import Task, TaskCreate
from ..schedule import compute_next_fire_at_ms, now_ms, validate_schedule
from ..types import SchedulerStatus, TaskState
from .store import TaskStore

logger = logger.bind(module="scheduler.service")


@dataclass
class FireRecord:
    """What happened to one task during a firing pass."""
    task: Task                  # Task as it was when it fired
    fired_at_ms: int            # Clock reading at fire time
    state: TaskState            # PENDING (rescheduled) or REMOVED
    next_fire_at_ms: int | None = None


class SchedulerService:
    """Owns the pending index and drives the wait/fire loop.

    The store, dispatcher and clock are injected so the service can be
    exercised without a transport, a real desktop or real time.
    """

    def __init__(
        self,
        store: TaskStore,
        dispatcher: TaskDispatcher,
        clock: Callable[[], int] = now_ms,
        max_sleep_seconds: float = 60.0,
        default_sound_path: str | None = None,
        default_image_path: str | None = None,
    ):
        """Initialize service.

        Args:
            store: Durable task store (loaded by start())
            dispatcher: Notification dispatcher for due tasks
            clock: Returns the current time in ms
            max_sleep_seconds: Upper bound for one timer sleep
            default_sound_path: Sound used when a task has none
            default_image_path: Image used when a task has none
        """
        self.store = store
        self.dispatcher = dispatcher
        self._clock = clock
        self.max_sleep_seconds = max_sleep_seconds
        self.default_sound_path = default_sound_path
        self.default_image_path = default_image_path

        self._index: list[tuple[int, int]] = []
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    # ============== Lifecycle ==============

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def load(self) -> None:
        """Load the store and rebuild the pending index."""
        async with self._lock:
            self._index = []
            now = self._clock()
            for task in self.store.load():
                if task.next_fire_at_ms is None:
                    task = self._recover_next_fire(task, now)
                    if task is None:
                        continue
                if task.next_fire_at_ms <= now:
                    logger.info(f"Task {task.id} is overdue, firing on next pass")
                heapq.heappush(self._index, (task.next_fire_at_ms, task.id))
        logger.info(f"Scheduler index holds {len(self._index)} tasks")

    def _recover_next_fire(self, task: Task, now: int) -> Task | None:
        """Fill in a missing next_fire_at_ms for a hand-edited task."""
        try:
            next_fire = compute_next_fire_at_ms(
                task.schedule, task.created_at_ms, current_ms=now, last_fire_at_ms=task.last_fire_at_ms
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot schedule task {task.id}, leaving it unindexed: {e}")
            return None
        try:
            if next_fire is None:
                self.store.remove(task.id)
                return None
            task = replace(task, next_fire_at_ms=next_fire)
            self.store.update(task)
        except PersistenceError as e:
            logger.error(f"Failed to repair task {task.id}: {e}")
            return None
        return task

    async def start(self) -> None:
        """Load persisted tasks and start the timer loop."""
        if self.running:
            return
        await self.load()
        self._loop_task = asyncio.create_task(self._run_loop(), name="fmn-scheduler")
        logger.info("Scheduler started")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Stop the timer loop and wait briefly for in-flight dispatches."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.wait_for_dispatches(timeout=drain_timeout)
        logger.info("Scheduler stopped")

    async def _run_loop(self) -> None:
        while True:
            self._wake.clear()
            try:
                await self.fire_due_tasks()
            except Exception:
                logger.exception("Firing pass failed")

            timeout = self._sleep_seconds()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def _sleep_seconds(self) -> float:
        next_wake = self.next_wake_at_ms()
        if next_wake is None:
            return self.max_sleep_seconds
        delay = max(0.0, (next_wake - self._clock()) / 1000)
        return min(delay, self.max_sleep_seconds)

    def wake(self) -> None:
        """Interrupt the current sleep so the index is re-evaluated."""
        self._wake.set()

    # ============== Index ==============

    def next_wake_at_ms(self) -> int | None:
        """Earliest pending fire time, dropping stale index entries."""
        while self._index:
            fire_at, task_id = self._index[0]
            task = self.store.get(task_id)
            if task is not None and task.next_fire_at_ms == fire_at:
                return fire_at
            heapq.heappop(self._index)
        return None

    # ============== Operations ==============

    async def add_task(self, create: TaskCreate) -> Task:
        """Validate, schedule and persist a new task."""
        message = (create.message or "").strip()
        if not message:
            raise ValidationError("message must not be empty")
        validate_schedule(create.schedule)

        async with self._lock:
            now = self._clock()
            task = Task(
                id=self.store.allocate_id(),
                message=message,
                schedule=create.schedule,
                sound_path=create.sound_path or self.default_sound_path,
                image_path=create.image_path or self.default_image_path,
                created_at_ms=now,
            )
            task.next_fire_at_ms = compute_next_fire_at_ms(task.schedule, now, current_ms=now)
            self.store.add(task)
            heapq.heappush(self._index, (task.next_fire_at_ms, task.id))

        logger.info(f"Added task {task.describe()}")
        self.wake()
        return task

    async def remove_task(self, task_id: int) -> Task:
        """Delete a task; raises NotFoundError for unknown ids."""
        async with self._lock:
            task = self.store.get(task_id)
            if task is None or not self.store.remove(task_id):
                raise NotFoundError(task_id)

        logger.info(f"Removed task {task_id}")
        self.wake()
        return task

    async def get_task(self, task_id: int) -> Task | None:
        """Get a task by ID."""
        return self.store.get(task_id)

    async def list_tasks(self) -> list[Task]:
        """All pending tasks, oldest first."""
        return self.store.list()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.running,
            tasks_total=len(self.store),
            next_fire_at_ms=self.next_wake_at_ms(),
            dispatches_in_flight=len(self._inflight),
        )

    # ============== Firing ==============

    async def fire_due_tasks(self) -> list[FireRecord]:
        """Fire every task whose next_fire_at_ms has been reached."""
        records: list[FireRecord] = []
        async with self._lock:
            now = self._clock()
            while self._index and self._index[0][0] <= now:
                fire_at, task_id = heapq.heappop(self._index)
                task = self.store.get(task_id)
                if task is None or task.next_fire_at_ms != fire_at:
                    logger.debug(f"Skipping stale index entry for task {task_id}")
                    continue
                records.append(self._fire(task, fire_at, now))
        return records

    def _fire(self, task: Task, fire_at: int, now: int) -> FireRecord:
        logger.debug(f"Task {task.id} -> {TaskState.FIRING.value}")
        self._spawn_dispatch(task)

        record = FireRecord(task=task, fired_at_ms=now, state=TaskState.REMOVED)
        try:
            next_fire = compute_next_fire_at_ms(
                task.schedule, task.created_at_ms, current_ms=now, last_fire_at_ms=fire_at
            )
        except (TypeError, ValueError) as e:
            # Unschedulable tasks are dropped like exhausted ones
            logger.error(f"Cannot reschedule task {task.id}: {e}")
            next_fire = None
        try:
            if next_fire is None:
                self.store.remove(task.id)
                logger.info(f"Task {task.id} exhausted and removed")
            else:
                self.store.update(replace(task, next_fire_at_ms=next_fire, last_fire_at_ms=fire_at))
                heapq.heappush(self._index, (next_fire, task.id))
                record.state = TaskState.PENDING
                record.next_fire_at_ms = next_fire
        except PersistenceError as e:
            # Dropped from the index so it cannot fire again in this process
            logger.error(f"Failed to persist post-fire state of task {task.id}: {e}")
        return record

    def _spawn_dispatch(self, task: Task) -> None:
        job = asyncio.create_task(self._dispatch(task), name=f"fmn-dispatch-{task.id}")
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)

    async def _dispatch(self, task: Task) -> None:
        try:
            result = await self.dispatcher.dispatch(task)
        except Exception:
            logger.exception(f"Dispatcher crashed for task {task.id}")
            return
        if not result.ok:
            logger.warning(f"Task {task.id} fired with errors: {'; '.join(result.errors)}")
        else:
            logger.debug(f"Dispatched: {result.to_dict()}")

    async def wait_for_dispatches(self, timeout: float | None = None) -> None:
        """Wait until all in-flight dispatches have finished."""
        if not self._inflight:
            return
        done, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} dispatches still running")

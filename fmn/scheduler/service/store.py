"""YAML file-backed store for reminder tasks.

The file is the single source of truth: every mutation rewrites it
atomically (temp file + rename) before returning, and a failed write rolls
the in-memory change back so memory and disk never disagree.

Layout (tasks.yaml):
    next_id: 4
    tasks:
      - id: 3
        message: stretch
        schedule: {kind: per, interval_ms: 3600000}
        ...
"""
import os
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger

from ...errors import DuplicateIdError, NotFoundError, PersistenceError
from ..models import Task
from ..schedule import validate_schedule

logger = logger.bind(module="scheduler.store")


class TaskStore:
    """Direct file-backed map of task id -> Task.

    Not thread-safe on its own; the scheduler serializes access with its
    lock.
    """

    def __init__(self, path: str | Path):
        """Initialize store.

        Args:
            path: YAML file holding the task set
        """
        self.path = Path(path).expanduser()
        self._tasks: dict[int, Task] = {}
        self._next_id = 1

    # ============== Lifecycle ==============

    def load(self) -> list[Task]:
        """Read persisted tasks.

        A missing file yields an empty store. A corrupt file, including one
        holding a schedule that could never fire, is moved aside to
        ``<name>.corrupt`` and also yields an empty store.
        """
        self._tasks = {}
        self._next_id = 1
        if not self.path.exists():
            logger.info(f"No task file at {self.path}, starting empty")
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError("top-level document is not a mapping")

            tasks: dict[int, Task] = {}
            for task_data in data.get("tasks") or []:
                task = Task.from_dict(task_data)
                validate_schedule(task.schedule)
                if task.id in tasks:
                    raise ValueError(f"duplicate task id {task.id}")
                tasks[task.id] = task
            next_id = int(data.get("next_id", 1))
        except (OSError, yaml.YAMLError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Task file {self.path} is unreadable ({e}); starting empty")
            self._quarantine()
            return []

        self._tasks = tasks
        self._next_id = max([next_id, *(t.id + 1 for t in tasks.values())])
        logger.info(f"Loaded {len(self._tasks)} tasks from {self.path}")
        return self.list()

    def _quarantine(self) -> None:
        """Move an unreadable task file out of the way."""
        target = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, target)
            logger.warning(f"Moved unreadable task file to {target}")
        except OSError as e:
            logger.error(f"Failed to move unreadable task file aside: {e}")

    # ============== YAML I/O ==============

    def _document(self) -> dict[str, Any]:
        return {
            "next_id": self._next_id,
            "tasks": [task.to_dict() for task in self.list()],
        }

    def _write(self) -> None:
        """Write the full task set (atomic)."""
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write("# forget-me-not pending tasks\n")
                f.write("# Managed by fmn-daemon; edits are overwritten.\n\n")
                yaml.safe_dump(
                    self._document(),
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                )
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"failed to write {self.path}: {e}") from e

    def _commit(self, rollback: Callable[[], None]) -> None:
        """Persist, undoing the in-memory change on failure."""
        try:
            self._write()
        except PersistenceError:
            rollback()
            raise

    # ============== Task CRUD ==============

    def allocate_id(self) -> int:
        """Hand out a fresh id; ids are never reused."""
        task_id = self._next_id
        self._next_id += 1
        return task_id

    def add(self, task: Task) -> None:
        """Insert a new task."""
        if task.id in self._tasks:
            raise DuplicateIdError(task.id)

        previous_next_id = self._next_id
        self._tasks[task.id] = task
        self._next_id = max(self._next_id, task.id + 1)

        def rollback() -> None:
            self._tasks.pop(task.id, None)
            self._next_id = previous_next_id

        self._commit(rollback)
        logger.debug(f"Stored task {task.id}")

    def update(self, task: Task) -> None:
        """Replace an existing task by id."""
        previous = self._tasks.get(task.id)
        if previous is None:
            raise NotFoundError(task.id)

        self._tasks[task.id] = task

        def rollback() -> None:
            self._tasks[task.id] = previous

        self._commit(rollback)
        logger.debug(f"Updated task {task.id}")

    def remove(self, task_id: int) -> bool:
        """Permanently delete a task; False if it does not exist."""
        previous = self._tasks.pop(task_id, None)
        if previous is None:
            return False

        def rollback() -> None:
            self._tasks[task_id] = previous

        self._commit(rollback)
        logger.debug(f"Removed task {task_id}")
        return True

    def get(self, task_id: int) -> Task | None:
        """Get a task by ID."""
        return self._tasks.get(task_id)

    def list(self) -> list[Task]:
        """All tasks ordered by creation time, then id."""
        return sorted(self._tasks.values(), key=lambda t: (t.created_at_ms, t.id))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

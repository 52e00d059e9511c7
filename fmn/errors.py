"""Error taxonomy shared by the daemon and the client."""


class ReminderError(Exception):
    """Base class for all forget-me-not errors."""


class ValidationError(ReminderError, ValueError):
    """Malformed schedule, time or message input."""


class NotFoundError(ReminderError, KeyError):
    """No task with the requested id."""

    def __init__(self, task_id: int):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"task {self.task_id} not found"


class DuplicateIdError(ReminderError):
    """A task with the same id is already stored."""

    def __init__(self, task_id: int):
        super().__init__(f"task id {task_id} already exists")
        self.task_id = task_id


class PersistenceError(ReminderError):
    """The task store file could not be read or written."""


class TransportError(ReminderError):
    """A datagram could not be decoded, sent or answered."""


class DispatchError(ReminderError):
    """A notification collaborator failed."""

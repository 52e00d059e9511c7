"""Client-daemon command protocol over UDP."""
from .client import send_request
from .listener import CommandHandler, CommandListener
from .messages import (
    AddRequest,
    AfterSpec,
    AtSpec,
    ListRequest,
    PerSpec,
    RemoveRequest,
    Response,
    TaskView,
)

__all__ = [
    "AddRequest",
    "AfterSpec",
    "AtSpec",
    "CommandHandler",
    "CommandListener",
    "ListRequest",
    "PerSpec",
    "RemoveRequest",
    "Response",
    "TaskView",
    "send_request",
]

"""fmn: command-line client for fmn-daemon.

    fmn add "stand up" after 25m
    fmn add "drink water" per 1h -s ~/sounds/ding.wav
    fmn add "call home" at 19:30 --per-day
    fmn show
    fmn rm 3
"""
import argparse
import sys

from loguru import logger

from . import __version__
from .comm.client import send_request
from .comm.messages import (
    AddRequest,
    AfterSpec,
    AtSpec,
    ListRequest,
    PerSpec,
    RemoveRequest,
    TaskView,
)
from .config import Settings, parse_addr
from .errors import TransportError, ValidationError
from .scheduler.models import format_ms
from .scheduler.schedule import parse_duration, parse_time_of_day

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

ROW_FORMAT = "{:<6} {:<20} {:<19} {}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fmn", description="forget-me-not reminder client")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    attachments = argparse.ArgumentParser(add_help=False)
    attachments.add_argument("-s", "--sound", dest="sound_path", help="sound file played on fire")
    attachments.add_argument("-i", "--image", dest="image_path", help="image shown with the notification")

    add = sub.add_parser("add", help="register a reminder")
    add.add_argument("message", help="text shown in the notification")
    when = add.add_subparsers(dest="when", required=True)

    after = when.add_parser("after", parents=[attachments], help="fire once after a duration")
    after.add_argument("duration", help="e.g. 1d2h, 30m, 45s")

    per = when.add_parser("per", parents=[attachments], help="fire repeatedly every duration")
    per.add_argument("duration", help="e.g. 1h, 90m")

    at = when.add_parser("at", parents=[attachments], help="fire at a time of day")
    at.add_argument("time", help="HH:MM or HH:MM:SS")
    at.add_argument("-p", "--per-day", action="store_true", help="repeat every day")

    sub.add_parser("show", aliases=["list"], help="list pending reminders")

    rm = sub.add_parser("rm", help="remove a reminder")
    rm.add_argument("task_id", type=int)
    return parser


def build_request(args: argparse.Namespace, settings: Settings):
    """Turn parsed arguments into a request, validating locally first."""
    if args.command == "add":
        if args.when == "after":
            parse_duration(args.duration)
            schedule = AfterSpec(duration=args.duration)
        elif args.when == "per":
            parse_duration(args.duration)
            schedule = PerSpec(interval=args.duration)
        else:
            parse_time_of_day(args.time)
            schedule = AtSpec(time=args.time, per_day=args.per_day)
        if not args.message.strip():
            raise ValidationError("message must not be empty")
        return AddRequest(
            message=args.message,
            schedule=schedule,
            sound_path=args.sound_path or settings.sound_path,
            image_path=args.image_path or settings.image_path,
        )
    if args.command == "rm":
        if args.task_id < 1:
            raise ValidationError("task id must be a positive integer")
        return RemoveRequest(task_id=args.task_id)
    return ListRequest()


def format_tasks(tasks: list[TaskView]) -> str:
    lines = [ROW_FORMAT.format("ID", "SCHEDULE", "NEXT", "MESSAGE")]
    for task in tasks:
        lines.append(
            ROW_FORMAT.format(task.id, task.schedule_text, format_ms(task.next_fire_at_ms), task.message)
        )
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    logger.remove()
    logger.add(sys.stderr, level="WARNING", format="{message}")

    args = build_parser().parse_args(argv)
    settings = Settings.from_env()

    try:
        request = build_request(args, settings)
        host, port = parse_addr(settings.daemon_addr)
    except (ValidationError, ValueError) as e:
        print(f"fmn: {e}", file=sys.stderr)
        return EXIT_INVALID

    try:
        response = send_request(request, host, port, timeout=settings.client_timeout)
    except TransportError as e:
        print(f"fmn: {e}", file=sys.stderr)
        return EXIT_FAILED

    if not response.ok:
        print(f"fmn: {response.error}", file=sys.stderr)
        return EXIT_FAILED

    if isinstance(request, ListRequest):
        print(format_tasks(response.tasks))
    elif isinstance(request, AddRequest):
        task = response.task
        print(f"added task {task.id}: {task.schedule_text}, next at {format_ms(task.next_fire_at_ms)}")
    else:
        print(f"removed task {response.task.id}: {response.task.message}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

"""fmn-daemon entry point."""
import asyncio
import signal
import sys

from loguru import logger

from .comm.listener import CommandHandler, CommandListener
from .config import Settings, parse_addr
from .scheduler.executor import TaskDispatcher
from .scheduler.models import format_ms
from .scheduler.service import SchedulerService, TaskStore


def setup_logging(settings: Settings) -> None:
    """Route loguru output to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
               "<cyan>{extra[module]}</cyan> - <level>{message}</level>",
    )
    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
    logger.configure(extra={"module": "fmn"})


def build_service(settings: Settings) -> SchedulerService:
    """Construct the scheduler with its store and dispatcher."""
    return SchedulerService(
        store=TaskStore(settings.tasks_path),
        dispatcher=TaskDispatcher(timeout_seconds=settings.dispatch_timeout),
        max_sleep_seconds=settings.max_sleep,
        default_sound_path=settings.sound_path,
        default_image_path=settings.image_path,
    )


async def run_daemon(settings: Settings) -> int:
    """Run until SIGINT/SIGTERM. Returns the process exit code."""
    service = build_service(settings)
    listener = CommandListener(
        CommandHandler(service),
        host=settings.daemon_host,
        port=settings.daemon_port,
    )

    try:
        await listener.start()
    except OSError as e:
        logger.error(f"Cannot listen on udp://{settings.daemon_addr}: {e}")
        return 1

    try:
        await service.start()
    except Exception:
        logger.exception("Scheduler failed to start")
        await listener.stop()
        return 1

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops
            pass

    status = service.status()
    logger.info(
        f"fmn-daemon ready, {status.tasks_total} pending tasks in {settings.tasks_path}, "
        f"next fire {format_ms(status.next_fire_at_ms)}"
    )
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down")
        await listener.stop()
        await service.stop()
    return 0


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings)
    try:
        parse_addr(settings.daemon_addr)
    except ValueError as e:
        logger.error(f"FMN_DAEMON_ADDR: {e}")
        sys.exit(1)

    try:
        code = asyncio.run(run_daemon(settings))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()

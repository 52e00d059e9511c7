"""Notification dispatcher for due tasks.

Bridges the scheduler and the desktop: shows the notification popup and
plays the attached sound. Every collaborator call is time-bounded and every
failure is reported in the returned DispatchResult; nothing escapes to the
scheduler.
"""
import asyncio
import shutil
import sys
from pathlib import Path
from typing import Protocol

from loguru import logger
from plyer import notification

from ..errors import DispatchError
from .models import Task
from .types import DispatchResult, RunStatus

logger = logger.bind(module="scheduler.executor")

SUMMARY = "forget-me-not"


# ============== Protocol Definitions ==============

class Notifier(Protocol):
    """Protocol for showing a desktop notification."""

    async def notify(self, title: str, message: str, image_path: str | None = None) -> None:
        """Show a notification, raising on failure."""
        ...


class SoundPlayer(Protocol):
    """Protocol for playing an audio file."""

    async def play(self, sound_path: str) -> None:
        """Play a sound file to completion, raising on failure."""
        ...


# ============== Default collaborators ==============

class DesktopNotifier:
    """Desktop notifications through plyer.

    Image support depends on the platform backend; the image is passed as
    the notification icon.
    """

    def __init__(self, app_name: str = SUMMARY, timeout: int = 10):
        self.app_name = app_name
        self.timeout = timeout

    async def notify(self, title: str, message: str, image_path: str | None = None) -> None:
        kwargs = {
            "title": title,
            "message": message,
            "app_name": self.app_name,
            "timeout": self.timeout,
        }
        if image_path:
            kwargs["app_icon"] = image_path
        await asyncio.to_thread(notification.notify, **kwargs)


def player_command(sound_path: str, platform: str | None = None) -> list[str]:
    """Pick the external audio player for the running OS.

    Args:
        sound_path: File to play
        platform: Override for ``sys.platform`` (tests)

    Returns:
        argv for the player process
    """
    platform = platform or sys.platform
    if platform == "darwin":
        return ["afplay", sound_path]
    if platform.startswith("win"):
        # Single-quoted PowerShell literal: embedded quotes are doubled
        quoted = sound_path.replace("'", "''")
        script = f"(New-Object Media.SoundPlayer '{quoted}').PlaySync()"
        return ["powershell", "-NoProfile", "-Command", script]

    for candidate in (
        ["paplay", sound_path],
        ["aplay", "-q", sound_path],
        ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet", sound_path],
    ):
        if shutil.which(candidate[0]):
            return candidate
    raise DispatchError("no audio player found (tried paplay, aplay, ffplay)")


class CommandSoundPlayer:
    """Plays sounds by spawning the OS audio utility."""

    async def play(self, sound_path: str) -> None:
        argv = player_command(sound_path)
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timed out by the dispatcher
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            raise DispatchError(f"{argv[0]} exited with {process.returncode} {detail}".strip())


# ============== Dispatcher ==============

class TaskDispatcher:
    """Fires the notification side effects for a due task."""

    def __init__(
        self,
        notifier: Notifier | None = None,
        sound_player: SoundPlayer | None = None,
        timeout_seconds: float = 30.0,
    ):
        """Initialize dispatcher with collaborators.

        Args:
            notifier: Desktop notification implementation
            sound_player: Audio playback implementation
            timeout_seconds: Upper bound for each collaborator call
        """
        self.notifier = notifier or DesktopNotifier()
        self.sound_player = sound_player or CommandSoundPlayer()
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, task: Task) -> DispatchResult:
        """Show the notification and play the sound for ``task``."""
        logger.info(f"Firing task {task.id}: {task.message}")
        result = DispatchResult(task_id=task.id)

        result.notification = await self._run(
            result,
            "notification",
            self.notifier.notify(SUMMARY, task.message, task.image_path),
        )

        if task.sound_path:
            if not Path(task.sound_path).expanduser().is_file():
                result.sound = RunStatus.FAILED
                self._report(result, "sound", DispatchError(f"sound file not found: {task.sound_path}"))
            else:
                result.sound = await self._run(
                    result,
                    "sound",
                    self.sound_player.play(str(Path(task.sound_path).expanduser())),
                )

        return result

    async def _run(self, result: DispatchResult, what: str, call) -> RunStatus:
        try:
            await asyncio.wait_for(call, timeout=self.timeout_seconds)
            return RunStatus.OK
        except asyncio.TimeoutError:
            self._report(result, what, DispatchError(f"{what} timed out after {self.timeout_seconds}s"))
            return RunStatus.TIMEOUT
        except Exception as e:
            self._report(result, what, e)
            return RunStatus.FAILED

    @staticmethod
    def _report(result: DispatchResult, what: str, error: Exception) -> None:
        message = f"{what} failed for task {result.task_id}: {error}"
        result.errors.append(message)
        logger.error(message)

"""Configuration - environment driven settings for the daemon and client."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
load_dotenv()

DEFAULT_DAEMON_ADDR = "localhost:8082"

# loguru's built-in level names
LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def parse_addr(addr: str) -> tuple[str, int]:
    """Split a ``host:port`` string.

    Args:
        addr: Address such as ``localhost:8082`` or ``127.0.0.1:9000``

    Returns:
        (host, port) tuple
    """
    host, sep, port = addr.strip().rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid address {addr!r}, expected host:port")
    port_num = int(port)
    if not 0 < port_num < 65536:
        raise ValueError(f"invalid port in address {addr!r}")
    return host, port_num


def _log_level_env(name: str, default: str = "INFO") -> str:
    level = os.getenv(name, "").strip().upper()
    return level if level in LOG_LEVELS else default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Runtime settings"""

    # Task store
    tasks_path: Path = field(default_factory=lambda: Path.home() / ".fmn" / "tasks.yaml")

    # Daemon UDP address
    daemon_addr: str = DEFAULT_DAEMON_ADDR

    # Process-wide attachment defaults
    sound_path: Optional[str] = None
    image_path: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # Timeouts (seconds)
    dispatch_timeout: float = 30.0
    max_sleep: float = 60.0
    client_timeout: float = 3.0

    @property
    def daemon_host(self) -> str:
        return parse_addr(self.daemon_addr)[0]

    @property
    def daemon_port(self) -> int:
        return parse_addr(self.daemon_addr)[1]

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables (and ``.env``)."""
        log_file = os.getenv("FMN_LOG_FILE")
        return cls(
            tasks_path=Path(os.getenv(
                "FMN_TASKS_PATH", str(Path.home() / ".fmn" / "tasks.yaml")
            )).expanduser(),
            daemon_addr=os.getenv("FMN_DAEMON_ADDR", DEFAULT_DAEMON_ADDR),
            sound_path=os.getenv("FMN_SOUND_PATH") or None,
            image_path=os.getenv("FMN_IMAGE_PATH") or None,
            log_level=_log_level_env("FMN_LOG_LEVEL"),
            log_file=Path(log_file).expanduser() if log_file else None,
            dispatch_timeout=_float_env("FMN_DISPATCH_TIMEOUT", 30.0),
            max_sleep=_float_env("FMN_MAX_SLEEP", 60.0),
            client_timeout=_float_env("FMN_CLIENT_TIMEOUT", 3.0),
        )

"""procpump environment configuration.

Environment variables:
    PROCPUMP_LOG_DEBUG: Debug logging
        - true/1/yes = on (logs go to a temp file at DEBUG level)
        - false/0/no = off (default, logs go to stderr)

    PROCPUMP_READ_CHUNK_SIZE: Stream pump buffer size in bytes
        - default 4096
        - clamped to 512..1048576, invalid values fall back to the default

    PROCPUMP_NEW_SESSION: Isolate the child process
        - true/1/yes = on (default, new session / process group)
        - false/0/no = off (child shares the caller's process group)

    PROCPUMP_SIGINT_MODE: Ctrl+C handling for the command line front end
        - cancel = cancel the running invocation (default)
        - exit = cancel and exit
        - cancel_then_exit = cancel first, exit on the second Ctrl+C

    PROCPUMP_SIGINT_DOUBLE_TAP_WINDOW: Double-tap window in seconds
        - default 1.0
        - a second Ctrl+C inside this window forces exit
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode"]

DEFAULT_READ_CHUNK_SIZE = 4096
MIN_READ_CHUNK_SIZE = 512
MAX_READ_CHUNK_SIZE = 1024 * 1024


class SigintMode(Enum):
    """SIGINT handling mode.

    - CANCEL: cancel the running invocation only
    - EXIT: cancel the running invocation and exit
    - CANCEL_THEN_EXIT: cancel first, exit on a second SIGINT
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """Parse a mode string, falling back to CANCEL for unknown values."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_chunk_size(value: str | None) -> int:
    """Parse the pump buffer size."""
    if not value:
        return DEFAULT_READ_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_CHUNK_SIZE
    return max(MIN_READ_CHUNK_SIZE, min(size, MAX_READ_CHUNK_SIZE))


def _parse_sigint_mode(value: str | None) -> SigintMode:
    if not value:
        return SigintMode.CANCEL
    return SigintMode.from_string(value)


def _parse_double_tap_window(value: str | None) -> float:
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))
    except ValueError:
        return 1.0


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "procpump"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procpump_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """procpump configuration.

    Attributes:
        log_debug: Write DEBUG logs to a temp file
        log_file: Log file path (set when log_debug is on)
        read_chunk_size: Stream pump buffer size in bytes
        new_session: Run children in their own session / process group
        sigint_mode: Ctrl+C handling mode for the front end
        sigint_double_tap_window: Double-tap exit window in seconds
    """

    log_debug: bool = False
    log_file: str | None = None
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    new_session: bool = True
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"read_chunk_size={self.read_chunk_size}, "
            f"new_session={self.new_session}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PROCPUMP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        log_debug=log_debug,
        log_file=log_file,
        read_chunk_size=_parse_chunk_size(os.environ.get("PROCPUMP_READ_CHUNK_SIZE")),
        new_session=_parse_bool(os.environ.get("PROCPUMP_NEW_SESSION"), default=True),
        sigint_mode=_parse_sigint_mode(os.environ.get("PROCPUMP_SIGINT_MODE")),
        sigint_double_tap_window=_parse_double_tap_window(
            os.environ.get("PROCPUMP_SIGINT_DOUBLE_TAP_WINDOW")
        ),
    )


# Shared instance, created lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the shared configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Rebuild the shared configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config

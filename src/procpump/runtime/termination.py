"""Forced termination and cancellation wiring.

Cancellation always kills (SIGKILL / TerminateProcess) rather than asking
the child to shut down: the engine is always waiting on the child's
output, so a child that ignores SIGTERM would hang the caller.

Killing a process that has already exited is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Callable

from ..cancellation import CancellationRegistration, CancellationToken
from .spawner import IS_WINDOWS

__all__ = ["kill_process", "CancellationController"]

logger = logging.getLogger(__name__)


def kill_process(
    process: asyncio.subprocess.Process,
    *,
    process_group: bool = True,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> bool:
    """Forcibly terminate a child process.

    Args:
        process: The subprocess
        process_group: Kill the child's whole process group (POSIX, only
            when the child leads its own group)
        log: Logger (defaults to this module's logger)

    Returns:
        True if a kill was delivered, False if the process had already exited
    """
    log = log or logger
    pid = process.pid

    if process.returncode is not None:
        log.debug(f"Subprocess already exited pid={pid}")
        return False

    try:
        if process_group and not IS_WINDOWS and _leads_own_group(pid):
            os.killpg(pid, signal.SIGKILL)
            log.debug(f"Sent SIGKILL to process group pgid={pid}")
        else:
            process.kill()
            log.debug(f"Called kill() on pid={pid}")
        return True
    except ProcessLookupError:
        log.debug(f"Subprocess already exited pid={pid}")
        return False
    except OSError as e:
        if process.returncode is not None:
            log.debug(f"Subprocess exited during kill pid={pid}: {e}")
        else:
            log.warning(f"Error killing subprocess pid={pid}: {e}")
        return False


def _leads_own_group(pid: int) -> bool:
    # Never signal a group the caller itself belongs to
    try:
        return os.getpgid(pid) == pid
    except OSError:
        return False


class CancellationController:
    """Kills one child process when a cancellation token fires.

    Armed for the duration of an invocation. The token may fire on any
    thread; the kill is always issued on the event loop that owns the
    process.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        token: CancellationToken | None,
        *,
        process_group: bool = True,
        on_kill: Callable[[], None] | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._process = process
        self._token = token
        self._process_group = process_group
        self._on_kill = on_kill
        self._log = log or logger
        self._loop = asyncio.get_running_loop()
        self._registration: CancellationRegistration | None = None
        self._armed = False
        self.fired = False

    def arm(self) -> "CancellationController":
        """Start observing the token. Fires at once if it is already set."""
        self._armed = True
        if self._token is not None:
            self._registration = self._token.register(self._on_cancel)
        return self

    def disarm(self) -> None:
        """Stop observing the token."""
        self._armed = False
        if self._registration is not None:
            self._registration.unregister()
            self._registration = None

    def kill(self) -> bool:
        """Kill the child now. Safe to call more than once."""
        self.fired = True
        if self._on_kill is not None:
            self._on_kill()
        return kill_process(
            self._process,
            process_group=self._process_group,
            log=self._log,
        )

    def _on_cancel(self) -> None:
        if not self._armed:
            return
        self._log.debug(f"Cancellation requested, killing pid={self._process.pid}")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self.kill()
            return

        try:
            self._loop.call_soon_threadsafe(self.kill)
        except RuntimeError:
            # Loop already closed: the invocation has finished
            self._log.debug(f"Cancellation arrived after completion pid={self._process.pid}")

    def __enter__(self) -> "CancellationController":
        return self.arm()

    def __exit__(self, *exc_info: object) -> None:
        self.disarm()

"""Exit synchronization.

Produces exactly one ExitOutcome per process. A fast child (``true``) can
exit before anyone is listening, so the synchronizer checks the return
code right after spawn and only subscribes to the exit notification when
the child is still running. Both paths resolve the same set-once future.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

__all__ = ["ExitOutcome", "ExitSynchronizer"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitOutcome:
    """Authoritative termination result of one invocation.

    Attributes:
        exit_code: Process exit code (negative signal number on POSIX
            when killed by a signal)
        completed: Whether the process terminated on its own
    """

    exit_code: int
    completed: bool = True


class ExitSynchronizer:
    """Set-once exit notification for a single process.

    Example:
        sync = ExitSynchronizer(process).start()
        outcome = await sync.wait()
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._process = process
        self._log = log or logger
        self._outcome: asyncio.Future[ExitOutcome] = asyncio.get_running_loop().create_future()
        self._watch_task: asyncio.Task[int] | None = None
        self._killed = False

    @property
    def done(self) -> bool:
        """Whether the outcome has been produced."""
        return self._outcome.done()

    def mark_killed(self) -> None:
        """Record that termination was forced, for ExitOutcome.completed."""
        self._killed = True

    def start(self) -> "ExitSynchronizer":
        """Check for an early exit, otherwise subscribe to the exit event."""
        returncode = self._process.returncode
        if returncode is not None:
            self._log.debug(f"pid={self._process.pid} already exited before subscribe")
            self._resolve(returncode)
            return self

        self._watch_task = asyncio.ensure_future(self._process.wait())
        self._watch_task.add_done_callback(self._on_exited)
        return self

    def _on_exited(self, task: asyncio.Task[int]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            if not self._outcome.done():
                self._outcome.set_exception(error)
            return
        self._resolve(task.result())

    def _resolve(self, returncode: int) -> bool:
        """Produce the outcome; later attempts are ignored."""
        if self._outcome.done():
            return False
        self._outcome.set_result(
            ExitOutcome(exit_code=returncode, completed=not self._killed)
        )
        self._log.debug(f"pid={self._process.pid} exit outcome returncode={returncode}")
        return True

    async def wait(self) -> ExitOutcome:
        """Wait for the outcome.

        Cancelling the waiter does not cancel the underlying outcome, so a
        later wait() still observes it.
        """
        return await asyncio.shield(self._outcome)

    def close(self) -> None:
        """Stop listening if the outcome was never produced."""
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
        if not self._outcome.done():
            self._outcome.cancel()

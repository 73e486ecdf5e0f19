"""Cancellation tokens.

A CancellationToken is a one-way signal from a caller to the execution
engine. It transitions from "not requested" to "requested" at most once,
and runs its registered callbacks exactly once when that happens.

Tokens are thread-safe: cancel() may be called from a signal handler,
another thread, or another task while an invocation is running.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from .errors import Cancelled

__all__ = ["CancellationToken", "CancellationRegistration"]

logger = logging.getLogger(__name__)


class CancellationRegistration:
    """Handle returned by CancellationToken.register().

    Usable as a context manager; leaving the block unregisters the callback.
    """

    def __init__(self, token: "CancellationToken", callback: Callable[[], None]) -> None:
        self._token = token
        self._callback = callback

    def unregister(self) -> bool:
        """Remove the callback. Returns False if it was already gone."""
        return self._token._unregister(self._callback)

    def __enter__(self) -> "CancellationRegistration":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unregister()


class CancellationToken:
    """Observable, set-once cancellation signal.

    Example:
        ```python
        token = CancellationToken()
        task = asyncio.create_task(runner.run("sleep", ["60"], cancel_token=token))

        token.cancel()  # kills the child; run() raises Cancelled
        ```
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @classmethod
    def cancelled(cls) -> "CancellationToken":
        """Return a token that is already in the requested state."""
        token = cls()
        token.cancel()
        return token

    @property
    def is_cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._cancelled

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True if this call moved the token to the requested state,
            False if it was already cancelled
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            callbacks = self._callbacks
            self._callbacks = []

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in cancellation callback: {e}")
        return True

    def register(self, callback: Callable[[], None]) -> CancellationRegistration:
        """Register a callback to run when cancellation is requested.

        If the token is already cancelled, the callback runs immediately
        on the calling thread.
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return CancellationRegistration(self, callback)

        callback()
        return CancellationRegistration(self, callback)

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if cancellation has been requested."""
        if self._cancelled:
            raise Cancelled()

    def _unregister(self, callback: Callable[[], None]) -> bool:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
                return True
            return False

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"

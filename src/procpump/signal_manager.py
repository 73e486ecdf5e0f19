"""Signal management for the command line front end.

Turns OS signals into cancellation of the running invocation:
- SIGINT: cancel the running invocation (instead of killing the caller)
- SIGTERM: cancel everything and request shutdown

Configuration:
- PROCPUMP_SIGINT_MODE: cancel | exit | cancel_then_exit
- PROCPUMP_SIGINT_DOUBLE_TAP_WINDOW: double-tap exit window
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .cancellation import CancellationToken
from .config import SigintMode, get_config

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Routes SIGINT/SIGTERM to the cancellation tokens of active invocations.

    Example:
        ```python
        signal_manager = SignalManager()
        token = CancellationToken()

        await signal_manager.start()
        try:
            with signal_manager.tracking(token):
                await runner.run("xcodebuild", ["-runFirstLaunch"], cancel_token=token)
        finally:
            await signal_manager.stop()
        ```

    Attributes:
        sigint_mode: SIGINT handling mode
        double_tap_window: Double-tap exit window in seconds
    """

    def __init__(
        self,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._tokens: list[CancellationToken] = []
        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler: Optional[signal.Handlers] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """Whether a double SIGINT forced exit."""
        return self._force_exit

    # =========================================================================
    # Token tracking
    # =========================================================================

    def track(self, token: CancellationToken) -> None:
        """Route signals to this token until untrack() is called."""
        if token not in self._tokens:
            self._tokens.append(token)

    def untrack(self, token: CancellationToken) -> bool:
        if token in self._tokens:
            self._tokens.remove(token)
            return True
        return False

    def tracking(self, token: CancellationToken) -> "_Tracking":
        """Context manager form of track()/untrack()."""
        return _Tracking(self, token)

    def has_active_invocations(self) -> bool:
        return any(not token.is_cancelled for token in self._tokens)

    def cancel_all(self) -> int:
        """Cancel every tracked token.

        Returns:
            Number of tokens moved to the cancelled state
        """
        cancelled = sum(1 for token in list(self._tokens) if token.cancel())
        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} running invocation(s)")
        return cancelled

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Install signal handlers. Must be called inside the event loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (mode={self.sigint_mode.value}, "
                f"double_tap_window={self.double_tap_window}s)"
            )
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug(f"SIGINT handler installed on Windows (mode={self.sigint_mode.value})")

    async def stop(self) -> None:
        """Remove the signal handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except (ValueError, RuntimeError) as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        if self._shutdown_event:
            await self._shutdown_event.wait()

    # =========================================================================
    # Handlers
    # =========================================================================

    def _handle_sigint(self) -> None:
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self.cancel_all()
            self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL:
            if self.has_active_invocations():
                count = self.cancel_all()
                logger.info(f"SIGINT received (mode=cancel), cancelled {count} invocation(s)")
            else:
                logger.info("SIGINT received (mode=cancel), nothing running, requesting shutdown")
                self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            if self.has_active_invocations():
                count = self.cancel_all()
                logger.info(
                    f"SIGINT received (mode=cancel_then_exit), cancelled {count} invocation(s). "
                    f"Press Ctrl+C again within {self.double_tap_window}s to exit."
                )
                # Armed for the double tap, shutdown not triggered yet
                self._shutdown_requested = True
            else:
                logger.info(
                    "SIGINT received (mode=cancel_then_exit), nothing running, requesting shutdown"
                )
                self._request_shutdown()

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, cancelling and shutting down")
        self.cancel_all()
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _force_shutdown(self) -> None:
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self.cancel_all()
        self._request_shutdown()


class _Tracking:
    def __init__(self, manager: SignalManager, token: CancellationToken) -> None:
        self._manager = manager
        self._token = token

    def __enter__(self) -> CancellationToken:
        self._manager.track(self._token)
        return self._token

    def __exit__(self, *exc_info: object) -> None:
        self._manager.untrack(self._token)

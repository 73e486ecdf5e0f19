"""Process runner: the public execution facade.

procpump runtime module v0.1.0

This module provides:
- start_process(): run an Invocation, stream output into caller sinks,
  return the exit code
- run(): raw run, returns (exit_code, stdout, stderr) and never raises on
  a nonzero exit
- run_strict(): raises ProcessFailed on a nonzero exit
- try_run(): returns trimmed stdout, or None on failure
- run_sync(): blocking variant of run() for non-async callers

Key design points:
- stdout pump, stderr pump and the exit wait run concurrently and are all
  joined before an invocation completes, so output is never truncated
- A cancellation token kills the child (process group) and the ordinary
  completion path still joins the pumps
- Cancellation always wins over whatever exit code the child produced
- Cancelling the awaiting asyncio task kills the child as well; the join
  is shielded so pipes are drained before CancelledError propagates
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, NamedTuple

import anyio

from ..cancellation import CancellationToken
from ..config import get_config
from ..errors import Cancelled, LaunchError, ProcessFailed
from .exit_sync import ExitOutcome, ExitSynchronizer
from .pump import (
    DEFAULT_CHUNK_SIZE,
    BufferSink,
    CallbackSink,
    NullSink,
    OutputSink,
    TeeSink,
    pump_stream,
    synchronized,
)
from .spawner import Invocation, feed_stdin, launch
from .termination import CancellationController, kill_process

__all__ = [
    "ProcessRunner",
    "RunResult",
    "run",
    "run_strict",
    "try_run",
    "run_sync",
    "start_process",
]

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]


class RunResult(NamedTuple):
    """Raw result of a completed invocation."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class ProcessRunner:
    """Runs one external process per call with concurrent output draining.

    Settings left as None are taken from the environment configuration.

    Example:
        runner = ProcessRunner(logger=logging.getLogger("xcode"))

        code, out, err = await runner.run("xcode-select", ["--print-path"])
        path = await runner.try_run("xcrun", ["--find", "xcodebuild"])
        version = await runner.run_strict("pkgutil", ["--pkg-info", pkg_id])

    Attributes:
        new_session: Isolate children in their own session / process group.
            When off, cancellation kills only the direct child, and a
            grandchild still holding the output pipes keeps the run
            waiting until it exits
        chunk_size: Pump read buffer size in bytes
        encoding: Text encoding of the child's output
        logger: Logger for everything this runner reports
    """

    new_session: bool | None = None
    chunk_size: int | None = None
    encoding: str = "utf-8"
    logger: logging.Logger | logging.LoggerAdapter = field(default_factory=lambda: logger)

    def __post_init__(self) -> None:
        if self.new_session is None or self.chunk_size is None:
            config = get_config()
            if self.new_session is None:
                self.new_session = config.new_session
            if self.chunk_size is None:
                self.chunk_size = config.read_chunk_size

    # =========================================================================
    # Core primitive
    # =========================================================================

    async def start_process(
        self,
        invocation: Invocation,
        stdout: OutputSink | None = None,
        stderr: OutputSink | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> int:
        """Run an invocation, streaming its output into the given sinks.

        A missing sink still gets its stream drained (into a NullSink).

        Args:
            invocation: What to run
            stdout: Destination for stdout text
            stderr: Destination for stderr text
            cancel_token: Optional cancellation token

        Returns:
            The process exit code

        Raises:
            LaunchError: The process could not be started
            Cancelled: The token fired before or during execution
        """
        outcome = await self._execute(invocation, stdout, stderr, cancel_token)
        return outcome.exit_code

    async def _execute(
        self,
        invocation: Invocation,
        stdout: OutputSink | None,
        stderr: OutputSink | None,
        cancel_token: CancellationToken | None,
    ) -> ExitOutcome:
        log = self.logger

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        process = await launch(invocation, new_session=bool(self.new_session), log=log)

        # One lock per sink object, even when both streams share it
        stdout_sink = synchronized(stdout)
        stderr_sink = stdout_sink if stderr is not None and stderr is stdout else synchronized(stderr)

        exit_sync = ExitSynchronizer(process, log=log).start()
        controller = CancellationController(
            process,
            cancel_token,
            process_group=bool(self.new_session),
            on_kill=exit_sync.mark_killed,
            log=log,
        )

        try:
            with controller:
                units = [
                    self._pump(process.stdout, stdout_sink, "stdout"),
                    self._pump(process.stderr, stderr_sink, "stderr"),
                    exit_sync.wait(),
                ]
                if invocation.stdin_bytes is not None:
                    units.append(feed_stdin(process, invocation.stdin_bytes, log=log))

                joined = asyncio.gather(*units, return_exceptions=True)
                try:
                    results = await asyncio.shield(joined)
                except asyncio.CancelledError:
                    log.warning(
                        f"Task cancelled while pid={process.pid} running, killing"
                    )
                    controller.kill()
                    try:
                        await asyncio.shield(joined)
                    except asyncio.CancelledError:
                        pass
                    raise
        finally:
            if process.returncode is None and not exit_sync.done:
                # Unexpected error path: never leave the child behind
                kill_process(process, process_group=bool(self.new_session), log=log)
            exit_sync.close()

        if (cancel_token is not None and cancel_token.is_cancelled) or controller.fired:
            log.debug(f"pid={process.pid} cancelled, discarding its result")
            raise Cancelled()

        for result in results:
            if isinstance(result, BaseException):
                raise result

        outcome: ExitOutcome = results[2]
        log.debug(
            f"Subprocess completed pid={process.pid} "
            f"returncode={outcome.exit_code}"
        )
        return outcome

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        sink: OutputSink,
        name: str,
    ) -> int:
        return await pump_stream(
            stream,
            sink,
            name=name,
            chunk_size=self.chunk_size or DEFAULT_CHUNK_SIZE,
            encoding=self.encoding,
            log=self.logger,
        )

    # =========================================================================
    # Operation shapes
    # =========================================================================

    async def run_invocation(
        self,
        invocation: Invocation,
        *,
        cancel_token: CancellationToken | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> RunResult:
        """Raw run of a prepared invocation.

        Args:
            invocation: What to run
            cancel_token: Optional cancellation token
            on_stdout: Live callback for stdout text as it arrives
            on_stderr: Live callback for stderr text as it arrives

        Returns:
            RunResult; a nonzero exit code is returned, not raised
        """
        stdout_buffer = BufferSink()
        stderr_buffer = BufferSink()

        stdout_sink = _compose_sink(stdout_buffer if invocation.capture_stdout else None, on_stdout)
        stderr_sink = _compose_sink(stderr_buffer if invocation.capture_stderr else None, on_stderr)

        exit_code = await self.start_process(
            invocation,
            stdout_sink,
            stderr_sink,
            cancel_token=cancel_token,
        )
        return RunResult(exit_code, stdout_buffer.getvalue(), stderr_buffer.getvalue())

    async def run(
        self,
        executable: str,
        args: Iterable[str] = (),
        *,
        cancel_token: CancellationToken | None = None,
        cwd: Path | str | None = None,
        env: Mapping[str, str | None] | None = None,
        stdin_bytes: bytes | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> RunResult:
        """Run an executable and return (exit_code, stdout, stderr).

        Raises:
            LaunchError: The process could not be started
            Cancelled: The token fired before or during execution
        """
        invocation = Invocation.of(
            executable,
            args,
            cwd=cwd,
            env=env,
            stdin_bytes=stdin_bytes,
        )
        return await self.run_invocation(
            invocation,
            cancel_token=cancel_token,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
        )

    async def run_strict(
        self,
        executable: str,
        args: Iterable[str] = (),
        **kwargs: Any,
    ) -> str:
        """Run an executable and return its stdout.

        Raises:
            ProcessFailed: Nonzero exit; the message is the trimmed stderr,
                else the trimmed stdout, else "'<program>' returned exit code <n>"
            LaunchError: The process could not be started
            Cancelled: The token fired before or during execution
        """
        result = await self.run(executable, args, **kwargs)
        if result.exit_code != 0:
            error = ProcessFailed(executable, result.exit_code, result.stdout, result.stderr)
            self.logger.debug(f"{error.program} failed (exit {error.exit_code}): {error.message}")
            raise error
        return result.stdout

    async def try_run(
        self,
        executable: str,
        args: Iterable[str] = (),
        **kwargs: Any,
    ) -> str | None:
        """Run an executable and return its trimmed stdout, or None on failure.

        A launch failure or a nonzero exit yields None. Cancelled is
        re-raised.
        """
        try:
            result = await self.run(executable, args, **kwargs)
        except LaunchError as e:
            self.logger.debug(f"try_run could not start {executable}: {e.reason}")
            return None

        if result.exit_code != 0:
            self.logger.debug(f"try_run {executable} exited with code {result.exit_code}")
            return None
        return result.stdout.strip()

    def run_sync(
        self,
        executable: str,
        args: Iterable[str] = (),
        **kwargs: Any,
    ) -> RunResult:
        """Blocking variant of run() for callers outside an event loop.

        Drives the same pumps, exit synchronizer and cancellation on a
        private event loop. The cancel token may be fired from any thread.
        """
        return anyio.run(
            functools.partial(self.run, executable, tuple(args), **kwargs),
            backend="asyncio",
        )


def _compose_sink(buffer: BufferSink | None, callback: OutputCallback | None) -> OutputSink:
    if buffer is None and callback is None:
        return NullSink()
    if callback is None:
        return buffer  # type: ignore[return-value]
    if buffer is None:
        return CallbackSink(callback)
    return TeeSink(buffer, CallbackSink(callback))


# Convenience functions for simple use cases


async def start_process(
    invocation: Invocation,
    stdout: OutputSink | None = None,
    stderr: OutputSink | None = None,
    *,
    cancel_token: CancellationToken | None = None,
) -> int:
    """Module-level shortcut for ProcessRunner().start_process()."""
    return await ProcessRunner().start_process(
        invocation, stdout, stderr, cancel_token=cancel_token
    )


async def run(executable: str, args: Iterable[str] = (), **kwargs: Any) -> RunResult:
    """Module-level shortcut for ProcessRunner().run()."""
    return await ProcessRunner().run(executable, args, **kwargs)


async def run_strict(executable: str, args: Iterable[str] = (), **kwargs: Any) -> str:
    """Module-level shortcut for ProcessRunner().run_strict()."""
    return await ProcessRunner().run_strict(executable, args, **kwargs)


async def try_run(executable: str, args: Iterable[str] = (), **kwargs: Any) -> str | None:
    """Module-level shortcut for ProcessRunner().try_run()."""
    return await ProcessRunner().try_run(executable, args, **kwargs)


def run_sync(executable: str, args: Iterable[str] = (), **kwargs: Any) -> RunResult:
    """Module-level shortcut for ProcessRunner().run_sync()."""
    return ProcessRunner().run_sync(executable, args, **kwargs)

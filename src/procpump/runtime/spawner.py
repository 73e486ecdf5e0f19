"""Process spawning.

Starts a child process for an Invocation and wires up its pipes:
- stdout/stderr are always piped so they can be drained (into a null sink
  when the caller does not capture them)
- stdin is a pipe only when a payload is supplied, /dev/null otherwise
- POSIX: start_new_session=True puts the child in its own process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
import sys
import types
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import LaunchError

__all__ = [
    "IS_WINDOWS",
    "Invocation",
    "launch",
    "feed_stdin",
    "find_executable",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


@dataclass(frozen=True)
class Invocation:
    """One request to run an external program.

    Attributes:
        executable: Program to run (absolute path or a name looked up on PATH)
        args: Ordered argument list, never joined into a shell string
        cwd: Working directory (None = inherit)
        env: Environment overrides merged over the parent environment;
            a None value removes the variable
        capture_stdout: Keep stdout in the result (it is drained either way)
        capture_stderr: Keep stderr in the result (it is drained either way)
        stdin_bytes: Optional bytes written to stdin before it is closed
    """

    executable: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: Mapping[str, str | None] | None = None
    capture_stdout: bool = True
    capture_stderr: bool = True
    stdin_bytes: bytes | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        # Accept any iterable of arguments but store an immutable tuple
        if isinstance(self.args, str):
            raise TypeError("args must be a sequence of strings, not a single string")
        if not isinstance(self.args, tuple):
            object.__setattr__(self, "args", tuple(self.args))
        if isinstance(self.cwd, str):
            object.__setattr__(self, "cwd", Path(self.cwd))
        if self.env is not None:
            object.__setattr__(self, "env", types.MappingProxyType(dict(self.env)))

    @classmethod
    def of(cls, executable: str, args: Iterable[str] = (), **kwargs: Any) -> "Invocation":
        """Build an invocation from an executable and an argument iterable."""
        return cls(executable=executable, args=tuple(args), **kwargs)

    @property
    def argv(self) -> list[str]:
        """Full command line, executable first."""
        return [self.executable, *self.args]

    @property
    def program_name(self) -> str:
        """Base name of the executable, used in diagnostics."""
        return os.path.basename(self.executable) or self.executable

    def build_env(self) -> dict[str, str] | None:
        """Return the child's environment, or None to inherit unchanged."""
        if self.env is None:
            return None
        merged = dict(os.environ)
        for key, value in self.env.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        return merged


def _build_subprocess_kwargs(invocation: Invocation, new_session: bool) -> dict[str, Any]:
    """Build platform-specific kwargs for asyncio.create_subprocess_exec."""
    kwargs: dict[str, Any] = {}

    env = invocation.build_env()
    if env is not None:
        kwargs["env"] = env

    if invocation.cwd is not None:
        kwargs["cwd"] = invocation.cwd

    if new_session:
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

    return kwargs


async def launch(
    invocation: Invocation,
    *,
    new_session: bool = True,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> asyncio.subprocess.Process:
    """Start the child process described by an invocation.

    Args:
        invocation: What to run
        new_session: Isolate the child in its own session / process group
        log: Logger for launch diagnostics (defaults to this module's logger)

    Returns:
        The running process; stdout and stderr are always pipes

    Raises:
        LaunchError: The executable is missing, not executable, or the OS
            refused to create the process
    """
    log = log or logger
    kwargs = _build_subprocess_kwargs(invocation, new_session)

    # Use DEVNULL rather than None when there is no payload so the child
    # never inherits (and possibly closes) the caller's stdin.
    stdin = asyncio.subprocess.PIPE if invocation.stdin_bytes is not None else asyncio.subprocess.DEVNULL

    try:
        process = await asyncio.create_subprocess_exec(
            *invocation.argv,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
    except OSError as e:
        log.debug(f"Launch failed for {invocation.executable}: {e}")
        raise LaunchError(invocation.executable, e.strerror or str(e), e.errno) from e
    except ValueError as e:
        # e.g. embedded null byte in an argument
        log.debug(f"Launch rejected for {invocation.executable}: {e}")
        raise LaunchError(invocation.executable, str(e)) from e

    log.debug(
        f"Started subprocess pid={process.pid} "
        f"argv={invocation.executable} cwd={invocation.cwd}"
    )
    return process


async def feed_stdin(
    process: asyncio.subprocess.Process,
    data: bytes,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> None:
    """Write a payload to the child's stdin and close it.

    Runs alongside the pumps: a child that fills its output pipe before
    reading all of stdin would otherwise stall the write.
    """
    log = log or logger
    if process.stdin is None:
        return
    try:
        process.stdin.write(data)
        await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError) as e:
        # Child exited or closed stdin without reading everything
        log.debug(f"stdin closed early by pid={process.pid}: {e}")
    finally:
        process.stdin.close()
        try:
            await process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass


def find_executable(name: str) -> str | None:
    """Resolve an executable the way a launch would.

    Paths containing a directory separator are checked for existence and
    execute permission; bare names are looked up on PATH.

    Returns:
        The resolved path, or None if it cannot be run
    """
    if os.path.dirname(name):
        if os.path.isfile(name) and os.access(name, os.X_OK):
            return name
        return None
    return shutil.which(name)

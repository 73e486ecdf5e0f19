"""procpump exception types.

procpump v0.1.0
"""

from __future__ import annotations

import os

__all__ = [
    "ProcessError",
    "LaunchError",
    "ProcessFailed",
    "Cancelled",
]


class ProcessError(Exception):
    """Base exception for the execution engine."""
    pass


class LaunchError(ProcessError):
    """The executable could not be started.

    Raised for a missing binary, a file without execute permission, or the
    OS refusing to create the process (resource exhaustion, argument list
    too long). The originating OSError is chained as ``__cause__``.

    Attributes:
        executable: Executable that failed to start
        errno: errno of the underlying OSError, if any
        reason: Human readable reason from the OS
    """

    def __init__(
        self,
        executable: str,
        reason: str,
        errno: int | None = None,
    ) -> None:
        self.executable = executable
        self.reason = reason
        self.errno = errno
        super().__init__(f"Failed to launch '{executable}': {reason}")


class ProcessFailed(ProcessError):
    """The process ran to completion with a nonzero exit code.

    Attributes:
        program: Executable that was run
        exit_code: Exit code of the process
        stdout: Captured stdout
        stderr: Captured stderr
        message: Diagnostic derived from stderr, then stdout
    """

    def __init__(
        self,
        program: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.program = program
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.message = self._diagnostic(program, exit_code, stdout, stderr)
        super().__init__(self.message)

    @staticmethod
    def _diagnostic(program: str, exit_code: int, stdout: str, stderr: str) -> str:
        message = stderr.strip() or stdout.strip()
        if not message:
            message = f"'{os.path.basename(program)}' returned exit code {exit_code}"
        return message


class Cancelled(ProcessError):
    """The caller's cancellation token fired before or during execution.

    Takes precedence over any exit code or output the process produced.
    """

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message)

"""procpump - concurrent external process execution.

Environment variables:
    PROCPUMP_LOG_DEBUG: Debug logging to a temp file (default false)
    PROCPUMP_READ_CHUNK_SIZE: Pump buffer size (default 4096)
    PROCPUMP_NEW_SESSION: Isolate children in their own session (default true)

Usage:
    from procpump import run, run_strict, try_run

    code, out, err = await run("echo", ["hello world"])
"""

__version__ = "0.1.0"

from .cancellation import CancellationToken
from .errors import Cancelled, LaunchError, ProcessError, ProcessFailed
from .runtime import Invocation, ProcessRunner, RunResult, find_executable
from .runtime.process_runner import run, run_strict, run_sync, start_process, try_run

__all__ = [
    "__version__",
    "CancellationToken",
    "Cancelled",
    "Invocation",
    "LaunchError",
    "ProcessError",
    "ProcessFailed",
    "ProcessRunner",
    "RunResult",
    "find_executable",
    "run",
    "run_strict",
    "run_sync",
    "start_process",
    "try_run",
]

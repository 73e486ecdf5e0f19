"""Runtime module for external process execution.

This module provides isolated process execution with concurrent draining
of stdout/stderr, race-free exit notification and kill-on-cancel.
"""

from __future__ import annotations

from .exit_sync import ExitOutcome, ExitSynchronizer
from .process_runner import ProcessRunner, RunResult
from .pump import BufferSink, CallbackSink, NullSink, SynchronizedSink
from .spawner import Invocation, find_executable, launch
from .termination import CancellationController, kill_process

__all__ = [
    "BufferSink",
    "CallbackSink",
    "CancellationController",
    "ExitOutcome",
    "ExitSynchronizer",
    "Invocation",
    "NullSink",
    "ProcessRunner",
    "RunResult",
    "SynchronizedSink",
    "find_executable",
    "kill_process",
    "launch",
]

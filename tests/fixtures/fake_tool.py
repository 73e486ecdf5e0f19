#!/usr/bin/env python3
"""Fake external tool for engine tests.

Simulates the kinds of programs the engine drives (xcrun, xcodebuild,
pkgutil): writes a configurable amount of output to stdout and stderr,
optionally sleeps, and exits with a chosen code.

Usage:
    python fake_tool.py [--stdout-bytes N] [--stderr-bytes N] [--stdout TEXT]
                        [--stderr TEXT] [--sleep SECONDS] [--exit-code CODE]
                        [--ignore-sigterm] [--echo-stdin] [--spawn-grandchild]

Output written with --stdout-bytes / --stderr-bytes is a repeating
alphabet so tests can check it byte for byte.
"""

from __future__ import annotations

import argparse
import signal
import subprocess
import sys
import time
from typing import NoReturn

PATTERN = "abcdefghijklmnopqrstuvwxyz0123456789\n"


def pattern_bytes(count: int) -> str:
    """Deterministic payload of exactly count characters."""
    repeats = count // len(PATTERN) + 1
    return (PATTERN * repeats)[:count]


def main() -> NoReturn:
    parser = argparse.ArgumentParser(description="Fake tool for testing")
    parser.add_argument("--stdout", default="", help="Literal text for stdout")
    parser.add_argument("--stderr", default="", help="Literal text for stderr")
    parser.add_argument("--stdout-bytes", type=int, default=0)
    parser.add_argument("--stderr-bytes", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--ignore-sigterm", action="store_true")
    parser.add_argument("--echo-stdin", action="store_true")
    parser.add_argument("--spawn-grandchild", action="store_true",
                        help="Start a sleeping grandchild that inherits stdout")
    args = parser.parse_args()

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    if args.spawn_grandchild:
        subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])

    if args.echo_stdin:
        sys.stdout.write(sys.stdin.read())

    # Interleave the two streams so neither pipe is written in one burst
    out = args.stdout + pattern_bytes(args.stdout_bytes)
    err = args.stderr + pattern_bytes(args.stderr_bytes)
    step = 8192
    for start in range(0, max(len(out), len(err)), step):
        if start < len(out):
            sys.stdout.write(out[start:start + step])
        if start < len(err):
            sys.stderr.write(err[start:start + step])
    sys.stdout.flush()
    sys.stderr.flush()

    if args.sleep:
        time.sleep(args.sleep)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()

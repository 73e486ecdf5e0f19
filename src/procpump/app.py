"""procpump command line entry point.

Usage:
    procpump [--mode raw|strict|try] [--cwd DIR] [--env KEY=VALUE ...]
             [--stream] EXECUTABLE [ARGS...]

Exit status:
    raw     the child's exit code (128+N when killed by signal N)
    strict  0, or 1 with the failure message on stderr
    try     0, or 1 when the run produced no result
    127     the executable could not be launched
    130     the run was cancelled (Ctrl+C / SIGTERM)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, TextIO

from . import __version__
from .cancellation import CancellationToken
from .config import get_config
from .errors import Cancelled, LaunchError, ProcessFailed
from .runtime import ProcessRunner
from .signal_manager import SignalManager

__all__ = ["build_parser", "run_cli", "main"]

logger = logging.getLogger(__name__)

EXIT_LAUNCH_FAILED = 127
EXIT_CANCELLED = 130


def _parse_env_pair(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got '{value}'")
    return key, val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procpump",
        description="Run an external program with concurrent output capture and kill-on-cancel.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--mode",
        choices=("raw", "strict", "try"),
        default="raw",
        help="raw: mirror exit code; strict: fail on nonzero exit; try: print trimmed stdout or fail",
    )
    parser.add_argument("--cwd", default=None, help="Working directory for the child")
    parser.add_argument(
        "--env",
        action="append",
        type=_parse_env_pair,
        default=[],
        metavar="KEY=VALUE",
        help="Environment override (repeatable)",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Write output live as it arrives instead of after completion",
    )
    parser.add_argument("executable", help="Program to run")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the program")
    return parser


def _writer(stream: TextIO):
    def write(text: str) -> None:
        stream.write(text)
        stream.flush()
    return write


async def run_cli(
    args: argparse.Namespace,
    signal_manager: SignalManager | None = None,
    runner: ProcessRunner | None = None,
) -> int:
    """Run one invocation described by parsed arguments.

    Returns:
        Process exit status for the front end
    """
    runner = runner or ProcessRunner(logger=logging.getLogger("procpump.cli"))
    token = CancellationToken()

    kwargs: dict[str, Any] = {
        "cancel_token": token,
        "cwd": args.cwd,
        "env": dict(args.env) if args.env else None,
    }
    if args.stream:
        kwargs["on_stdout"] = _writer(sys.stdout)
        kwargs["on_stderr"] = _writer(sys.stderr)

    if signal_manager is not None:
        signal_manager.track(token)

    try:
        if args.mode == "strict":
            output = await runner.run_strict(args.executable, args.args, **kwargs)
            if not args.stream:
                sys.stdout.write(output)
            return 0

        if args.mode == "try":
            output = await runner.try_run(args.executable, args.args, **kwargs)
            if output is None:
                return 1
            if not args.stream:
                sys.stdout.write(output + "\n")
            return 0

        result = await runner.run(args.executable, args.args, **kwargs)
        if not args.stream:
            sys.stdout.write(result.stdout)
            sys.stderr.write(result.stderr)
        if result.exit_code < 0:
            return 128 - result.exit_code
        return result.exit_code

    except ProcessFailed as e:
        sys.stderr.write(f"{e.message}\n")
        return 1
    except LaunchError as e:
        sys.stderr.write(f"procpump: {e}\n")
        return EXIT_LAUNCH_FAILED
    except Cancelled:
        logger.info(f"{args.executable} cancelled")
        return EXIT_CANCELLED
    finally:
        if signal_manager is not None:
            signal_manager.untrack(token)


async def _run_with_signals(args: argparse.Namespace) -> int:
    signal_manager = SignalManager()
    await signal_manager.start()
    try:
        status = await run_cli(args, signal_manager)
    finally:
        await signal_manager.stop()

    if signal_manager.is_force_exit:
        logger.warning("Force exit requested, terminating with exit code 130")
        return EXIT_CANCELLED
    return status


def configure_logging() -> None:
    """Configure handlers for the procpump namespace."""
    config = get_config()

    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("procpump").setLevel(log_level)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging()
    sys.exit(asyncio.run(_run_with_signals(args)))


if __name__ == "__main__":
    main()

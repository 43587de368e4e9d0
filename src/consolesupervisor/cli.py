"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path
from typing import TextIO

from .config import default_options, load_config
from .console import (
    ConsoleEventEmitter,
    ConsoleExitEvent,
    ConsoleLauncher,
    ConsoleOutputEvent,
    ConsoleProcessRegistry,
    ProcessLauncher,
    ProcessMode,
)
from .console.events import ConsoleEvent
from .console.module import initialize
from .errors import ConsoleError, ErrorKind, ExitCode, user_facing_error
from .logging import configure_logging, default_log_path, normalize_level
from .session import SessionRuntime

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_WAIT_SLICE = 0.1


def _log_level_type(value: str) -> str:
    normalized = normalize_level(value)
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _timeout_type(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--timeout must be a number") from exc
    if seconds <= 0:
        raise argparse.ArgumentTypeError("--timeout must be greater than zero")
    return seconds


def _env_type(value: str) -> tuple[str, str]:
    key, sep, item = value.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError("--env must look like KEY=VALUE")
    return key.strip(), item


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="consolesupervisor")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    subparsers = parser.add_subparsers(dest="action", required=True)

    run = subparsers.add_parser("run", help="Run one command under supervision")
    run.add_argument("command", help="Command line to run")
    run.add_argument("--pty", action="store_true", help="Run inside a pseudo-terminal")
    run.add_argument("--no-shell", action="store_true", help="Split the command instead of using the shell")
    run.add_argument("--cwd", default=None)
    run.add_argument("--env", type=_env_type, action="append", default=[])
    run.add_argument("--input", action="append", default=[], help="Text queued to stdin, in order")
    run.add_argument("--timeout", type=_timeout_type, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


class _ConsoleEcho:
    """Copies console events of one handle to local streams."""

    def __init__(self, handle: str, stdout: TextIO, stderr: TextIO) -> None:
        self.handle = handle
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code: int | None = None
        self.finished = threading.Event()

    def __call__(self, event: ConsoleEvent) -> None:
        if event.handle != self.handle:
            return
        if isinstance(event, ConsoleOutputEvent):
            stream = self.stderr if event.is_error else self.stdout
            stream.write(event.output)
            stream.flush()
        elif isinstance(event, ConsoleExitEvent):
            self.exit_code = event.exit_code
            self.finished.set()


def run_command(
    namespace: argparse.Namespace,
    *,
    launcher: ProcessLauncher | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    logger = py_logging.getLogger("consolesupervisor.cli")
    config = load_config(namespace.config)
    options = default_options(config)
    options = replace(
        options,
        mode=ProcessMode.PTY if namespace.pty else options.mode,
        use_shell=not namespace.no_shell,
        cwd=namespace.cwd or options.cwd,
        env={**dict(options.env), **dict(namespace.env)},
    )

    emitter = ConsoleEventEmitter()
    registry = ConsoleProcessRegistry(
        launcher=launcher or ConsoleLauncher.from_config(config),
        emitter=emitter,
        default_options=options,
    )
    runtime = SessionRuntime()
    initialize(runtime, registry)

    process = registry.create_process(namespace.command)
    echo = _ConsoleEcho(process.handle, stdout or sys.stdout, stderr or sys.stderr)
    unsubscribe = emitter.subscribe(echo)
    try:
        for text in namespace.input:
            process.enqueue_input(text)
        response = runtime.call_rpc("process_start", {"handle": process.handle})
        error = response.get("error")
        if error is not None:
            raise ConsoleError(
                error["message"],
                kind=ErrorKind(error["kind"]),
                hint=error["hint"],
            )

        deadline = clock() + namespace.timeout if namespace.timeout else None
        interrupted = False
        while not echo.finished.wait(_WAIT_SLICE):
            if deadline is not None and not interrupted and clock() >= deadline:
                logger.warning("Timeout reached after %ss; interrupting %s", namespace.timeout, process.handle)
                runtime.call_rpc("process_interrupt", {"handle": process.handle})
                interrupted = True
    finally:
        unsubscribe()

    exit_code = echo.exit_code if echo.exit_code is not None else int(ExitCode.RUNTIME_ERROR)
    logger.debug("Process %s finished with code %s", process.handle, exit_code)
    if interrupted:
        return int(ExitCode.INTERRUPTED)
    return exit_code if exit_code >= 0 else 128 - exit_code


def main(
    argv: Sequence[str] | None = None,
    *,
    launcher: ProcessLauncher | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    level = namespace.log_level or load_config(namespace.config).log_level
    logger = configure_logging(level=level, log_file=log_path)

    try:
        logger.debug("Starting %s flow", namespace.action)
        return run_command(namespace, launcher=launcher)
    except ConsoleError as exc:
        logger.error(
            "Handled ConsoleError (kind=%s code=%s): %s",
            exc.kind.value,
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return int(ExitCode.INTERRUPTED)
    except Exception as exc:
        # Traceback goes to the DEBUG file handler only; stderr stays terse.
        logger.error("Unhandled exception in CLI entrypoint: %s", type(exc).__name__)
        logger.debug("Unhandled exception details", exc_info=True)
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)

"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    LAUNCH_ERROR = 5
    PROCESS_ERROR = 6
    VALIDATION_ERROR = 7
    INTERRUPTED = 130


class ErrorKind(str, Enum):
    ALREADY_STARTED = "already_started"
    LAUNCH_FAILED = "launch_failed"
    PROCESS_EXITED = "process_exited"
    PROCESS_TERMINATING = "process_terminating"
    HANDLE_NOT_FOUND = "handle_not_found"
    PROCESS_RUNNING = "process_running"
    ALREADY_INITIALIZED = "already_initialized"
    UNKNOWN_METHOD = "unknown_method"
    INVALID_REQUEST = "invalid_request"
    CONFIG = "config"
    RUNTIME = "runtime"


_DEFAULT_CODES = {
    ErrorKind.ALREADY_STARTED: ExitCode.VALIDATION_ERROR,
    ErrorKind.LAUNCH_FAILED: ExitCode.LAUNCH_ERROR,
    ErrorKind.PROCESS_EXITED: ExitCode.PROCESS_ERROR,
    ErrorKind.PROCESS_TERMINATING: ExitCode.PROCESS_ERROR,
    ErrorKind.HANDLE_NOT_FOUND: ExitCode.VALIDATION_ERROR,
    ErrorKind.PROCESS_RUNNING: ExitCode.PROCESS_ERROR,
    ErrorKind.ALREADY_INITIALIZED: ExitCode.RUNTIME_ERROR,
    ErrorKind.UNKNOWN_METHOD: ExitCode.VALIDATION_ERROR,
    ErrorKind.INVALID_REQUEST: ExitCode.VALIDATION_ERROR,
    ErrorKind.CONFIG: ExitCode.CONFIG_ERROR,
    ErrorKind.RUNTIME: ExitCode.RUNTIME_ERROR,
}


@dataclass
class ConsoleError(Exception):
    message: str
    kind: ErrorKind = ErrorKind.RUNTIME
    code: ExitCode | None = None
    hint: str = ""

    def __post_init__(self) -> None:
        if self.code is None:
            self.code = _DEFAULT_CODES[self.kind]

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message

    def to_payload(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message, "hint": self.hint}


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."

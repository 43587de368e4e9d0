"""Console process domain models and collaborator contracts."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class ProcessMode(str, Enum):
    PIPE = "pipe"
    PTY = "pty"


class ConsoleState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"


class OutputStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class ProcessOptions:
    """Launch configuration passed through to the OS process layer."""

    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    mode: ProcessMode = ProcessMode.PIPE
    use_shell: bool = True
    shell: str = "/bin/sh"
    shell_args: tuple[str, ...] = ("-c",)
    encoding: str = "utf-8"
    pty_size: tuple[int, int] = (30, 120)


class ProcessOperations(Protocol):
    """What a supervised process may ask of the live child."""

    def write_stdin(self, data: str) -> None: ...

    def terminate(self) -> None: ...

    def poll(self) -> int | None: ...


@dataclass(frozen=True)
class ProcessCallbacks:
    """Callbacks the OS layer invokes, serially, for one child process."""

    on_continue: Callable[[ProcessOperations], bool]
    on_stdout: Callable[[ProcessOperations, str], None]
    on_stderr: Callable[[ProcessOperations, str], None]
    on_exit: Callable[[int], None]


class ProcessLauncher(Protocol):
    def launch(self, command: str, options: ProcessOptions, callbacks: ProcessCallbacks) -> None: ...

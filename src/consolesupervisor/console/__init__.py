"""Console process supervision domain package."""

from .backends import ConsoleLauncher, build_command_argv
from .driver import ProcessDriver
from .events import ConsoleEventEmitter, ConsoleExitEvent, ConsoleOutputEvent
from .handles import new_handle
from .models import (
    ConsoleState,
    OutputStream,
    ProcessCallbacks,
    ProcessLauncher,
    ProcessMode,
    ProcessOperations,
    ProcessOptions,
)
from .process import ConsoleProcess
from .registry import ConsoleProcessRegistry

__all__ = [
    "build_command_argv",
    "ConsoleEventEmitter",
    "ConsoleExitEvent",
    "ConsoleLauncher",
    "ConsoleOutputEvent",
    "ConsoleProcess",
    "ConsoleProcessRegistry",
    "ConsoleState",
    "new_handle",
    "OutputStream",
    "ProcessCallbacks",
    "ProcessDriver",
    "ProcessLauncher",
    "ProcessMode",
    "ProcessOperations",
    "ProcessOptions",
]

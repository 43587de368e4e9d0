"""Handle-addressed registry of console processes owned by one session."""

from __future__ import annotations

import logging as py_logging
import threading

from consolesupervisor.console.events import ConsoleEventEmitter
from consolesupervisor.console.handles import HandleFactory, allocate_handle, new_handle
from consolesupervisor.console.models import ProcessLauncher, ProcessOptions
from consolesupervisor.console.process import ConsoleProcess
from consolesupervisor.errors import ConsoleError, ErrorKind

logger = py_logging.getLogger(__name__)


class ConsoleProcessRegistry:
    """Sole owner of the session's console processes.

    Other components hold handles, never instances: they resolve a handle
    with ``lookup``/``require`` each time they need to act on a process.
    Eviction is a mechanism only; deciding when to evict exited processes
    belongs to the session runtime.
    """

    def __init__(
        self,
        *,
        launcher: ProcessLauncher,
        emitter: ConsoleEventEmitter | None = None,
        default_options: ProcessOptions | None = None,
        handle_factory: HandleFactory = new_handle,
    ) -> None:
        self._launcher = launcher
        self.emitter = emitter or ConsoleEventEmitter()
        self.default_options = default_options or ProcessOptions()
        self._handle_factory = handle_factory
        self._processes: dict[str, ConsoleProcess] = {}
        self._lock = threading.Lock()

    def create_process(self, command: str, options: ProcessOptions | None = None) -> ConsoleProcess:
        if not command.strip():
            raise ConsoleError(
                "Command cannot be empty.",
                kind=ErrorKind.INVALID_REQUEST,
                hint="Provide the command line to run.",
            )
        with self._lock:
            handle = allocate_handle(self._processes, self._handle_factory)
            process = ConsoleProcess(
                command,
                options or self.default_options,
                launcher=self._launcher,
                emitter=self.emitter,
                handle=handle,
            )
            self._processes[handle] = process
        logger.info("console-event handle=%s step=create message=Created process for: %s", handle, command)
        return process

    def lookup(self, handle: str) -> ConsoleProcess | None:
        with self._lock:
            return self._processes.get(handle)

    def require(self, handle: str) -> ConsoleProcess:
        process = self.lookup(handle)
        if process is None:
            raise ConsoleError(
                f"Console process not found: {handle}",
                kind=ErrorKind.HANDLE_NOT_FOUND,
                hint="Refresh the process list; the handle may have been evicted.",
            )
        return process

    def start(self, handle: str) -> ConsoleProcess:
        process = self.require(handle)
        process.start()
        return process

    def enqueue_input(self, handle: str, data: str) -> None:
        self.require(handle).enqueue_input(data)

    def interrupt(self, handle: str) -> None:
        self.require(handle).interrupt()

    def evict(self, handle: str) -> ConsoleProcess:
        with self._lock:
            process = self._processes.get(handle)
            if process is None:
                raise ConsoleError(
                    f"Console process not found: {handle}",
                    kind=ErrorKind.HANDLE_NOT_FOUND,
                    hint="The handle was never issued or is already evicted.",
                )
            if process.started and not process.exited:
                raise ConsoleError(
                    f"Console process still running: {handle}",
                    kind=ErrorKind.PROCESS_RUNNING,
                    hint="Interrupt the process and wait for it to exit first.",
                )
            del self._processes[handle]
        logger.info("console-event handle=%s step=evict message=Process evicted.", handle)
        return process

    def list_handles(self) -> list[str]:
        with self._lock:
            return sorted(self._processes)

    def list_processes(self) -> list[ConsoleProcess]:
        with self._lock:
            return [self._processes[key] for key in sorted(self._processes)]

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._processes

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

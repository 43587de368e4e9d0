"""Supervised console process: lifecycle flags, queued input and callbacks."""

from __future__ import annotations

import logging as py_logging
import threading

from consolesupervisor.console.events import ConsoleEventEmitter
from consolesupervisor.console.handles import new_handle
from consolesupervisor.console.models import (
    ConsoleState,
    OutputStream,
    ProcessCallbacks,
    ProcessLauncher,
    ProcessOperations,
    ProcessOptions,
)
from consolesupervisor.errors import ConsoleError, ErrorKind
from consolesupervisor.logging import ConsoleEventAdapter

logger = py_logging.getLogger(__name__)


class ConsoleProcess:
    """One child process supervised on behalf of a session.

    ``start``, ``on_continue``, ``on_stdout``, ``on_stderr`` and ``on_exit`` are
    driven serially by the thread that owns the child. ``enqueue_input`` and
    ``interrupt`` may be called from any thread; they only touch the input
    queue and the interrupt flag, both guarded by ``_lock``.
    """

    def __init__(
        self,
        command: str,
        options: ProcessOptions | None = None,
        *,
        launcher: ProcessLauncher,
        emitter: ConsoleEventEmitter | None = None,
        handle: str | None = None,
    ) -> None:
        self._command = command
        self._options = options or ProcessOptions()
        self._handle = handle or new_handle()
        self._launcher = launcher
        self._emitter = emitter
        self._log = ConsoleEventAdapter(logger, self._handle)

        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._started = False
        self._interrupt = False
        self._terminate_requested = False
        self._exited = False
        self._exit_code: int | None = None
        self._input_queue: list[str] = []

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def command(self) -> str:
        return self._command

    @property
    def options(self) -> ProcessOptions:
        return self._options

    @property
    def started(self) -> bool:
        with self._lock:
            return self._started

    @property
    def interrupt_requested(self) -> bool:
        with self._lock:
            return self._interrupt

    @property
    def exited(self) -> bool:
        with self._lock:
            return self._exited

    @property
    def exit_code(self) -> int | None:
        with self._lock:
            return self._exit_code

    @property
    def pending_input(self) -> str:
        with self._lock:
            return "".join(self._input_queue)

    @property
    def state(self) -> ConsoleState:
        with self._lock:
            if self._exited:
                return ConsoleState.EXITED
            if not self._started:
                return ConsoleState.CREATED
            if self._terminate_requested:
                return ConsoleState.TERMINATING
            return ConsoleState.RUNNING

    def start(self) -> None:
        """Launch the child and register this instance's callbacks.

        Launcher errors propagate unchanged and leave the process unstarted,
        so ``start`` may be retried until it succeeds once.
        """
        with self._start_lock:
            with self._lock:
                if self._started:
                    raise ConsoleError(
                        f"Console process already started: {self._handle}",
                        kind=ErrorKind.ALREADY_STARTED,
                        hint="Create a new console process to run the command again.",
                    )

            self._launcher.launch(self._command, self._options, self.create_process_callbacks())

            with self._lock:
                self._started = True
        self._log.event("start", f"Started command: {self._command}")

    def enqueue_input(self, data: str) -> None:
        with self._lock:
            if self._exited:
                raise ConsoleError(
                    f"Console process has exited: {self._handle}",
                    kind=ErrorKind.PROCESS_EXITED,
                    hint="Start a new process before sending input.",
                )
            if self._interrupt:
                raise ConsoleError(
                    f"Console process is being interrupted: {self._handle}",
                    kind=ErrorKind.PROCESS_TERMINATING,
                    hint="Input is no longer accepted after an interrupt.",
                )
            self._input_queue.append(data)
        self._log.debug("Queued %s chars of input", len(data))

    def interrupt(self) -> None:
        with self._lock:
            if self._exited:
                raise ConsoleError(
                    f"Console process has exited: {self._handle}",
                    kind=ErrorKind.PROCESS_EXITED,
                    hint="The process already finished; nothing to interrupt.",
                )
            already = self._interrupt
            self._interrupt = True
        if not already:
            self._log.event("interrupt", "Interrupt requested.")

    def create_process_callbacks(self) -> ProcessCallbacks:
        return ProcessCallbacks(
            on_continue=self.on_continue,
            on_stdout=self.on_stdout,
            on_stderr=self.on_stderr,
            on_exit=self.on_exit,
        )

    def on_continue(self, ops: ProcessOperations) -> bool:
        with self._lock:
            if self._exited or self._terminate_requested:
                return False
            if self._interrupt:
                self._terminate_requested = True
                pending = ""
                terminate = True
            else:
                # Swap the queue out under the lock; write outside it.
                pending = "".join(self._input_queue)
                self._input_queue.clear()
                terminate = False

        if terminate:
            self._log.event("terminate", "Requesting termination after interrupt.")
            ops.terminate()
            return False

        if pending:
            ops.write_stdin(pending)
            self._log.debug("Flushed %s chars to stdin", len(pending))
        return True

    def on_stdout(self, ops: ProcessOperations, output: str) -> None:
        del ops
        if self._emitter is not None:
            self._emitter.emit_output(self._handle, output, OutputStream.STDOUT)

    def on_stderr(self, ops: ProcessOperations, output: str) -> None:
        del ops
        if self._emitter is not None:
            self._emitter.emit_output(self._handle, output, OutputStream.STDERR)

    def on_exit(self, exit_code: int) -> None:
        discarded = ""
        with self._lock:
            duplicate = self._exited
            if not duplicate:
                self._exited = True
                self._exit_code = exit_code
                discarded = "".join(self._input_queue)
                self._input_queue.clear()

        if duplicate:
            self._log.warning("Ignoring repeated exit notification code=%s", exit_code)
            return
        if discarded:
            self._log.info("Discarded %s chars of unflushed input", len(discarded))
        self._log.event("exit", f"Process exited with code {exit_code}.")
        if self._emitter is not None:
            self._emitter.emit_exit(self._handle, exit_code)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "handle": self._handle,
                "command": self._command,
                "mode": self._options.mode.value,
                "started": self._started,
                "interrupt_requested": self._interrupt,
                "exited": self._exited,
                "exit_code": self._exit_code,
                "pending_input": sum(len(item) for item in self._input_queue),
            }

    def __repr__(self) -> str:
        return f"ConsoleProcess(handle={self._handle!r}, command={self._command!r}, state={self.state.value})"

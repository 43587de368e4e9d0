from __future__ import annotations

import sys
import threading
import time

import pytest

from consolesupervisor.console import (
    ConsoleEventEmitter,
    ConsoleExitEvent,
    ConsoleLauncher,
    ConsoleOutputEvent,
    ConsoleProcessRegistry,
    OutputStream,
    ProcessMode,
    ProcessOptions,
)
from consolesupervisor.console.events import ConsoleEvent
from consolesupervisor.errors import ConsoleError, ErrorKind

pytestmark = pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX shell required")


class _Watcher:
    def __init__(self) -> None:
        self.events: list[ConsoleEvent] = []
        self.finished = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, event: ConsoleEvent) -> None:
        with self._lock:
            self.events.append(event)
        if isinstance(event, ConsoleExitEvent):
            self.finished.set()

    def output(self, stream: OutputStream = OutputStream.STDOUT) -> str:
        with self._lock:
            return "".join(
                event.output for event in self.events if isinstance(event, ConsoleOutputEvent) and event.stream == stream
            )

    def exits(self) -> list[int]:
        with self._lock:
            return [event.exit_code for event in self.events if isinstance(event, ConsoleExitEvent)]


@pytest.fixture
def launcher():
    launcher = ConsoleLauncher(poll_interval=0.01, terminate_timeout=2.0)
    yield launcher
    launcher.stop_all()


def _registry(launcher: ConsoleLauncher, options: ProcessOptions | None = None):
    emitter = ConsoleEventEmitter()
    watcher = _Watcher()
    emitter.subscribe(watcher)
    registry = ConsoleProcessRegistry(launcher=launcher, emitter=emitter, default_options=options)
    return registry, watcher


def test_echo_output_arrives_before_exit(launcher: ConsoleLauncher) -> None:
    registry, watcher = _registry(launcher)
    process = registry.create_process("echo hello; echo oops 1>&2")

    registry.start(process.handle)

    assert watcher.finished.wait(10.0)
    assert watcher.output() == "hello\n"
    assert watcher.output(OutputStream.STDERR) == "oops\n"
    assert watcher.exits() == [0]
    assert isinstance(watcher.events[-1], ConsoleExitEvent)
    with pytest.raises(ConsoleError) as exc:
        registry.enqueue_input(process.handle, "late\n")
    assert exc.value.kind == ErrorKind.PROCESS_EXITED


def test_exit_status_is_reported(launcher: ConsoleLauncher) -> None:
    registry, watcher = _registry(launcher)
    process = registry.create_process("exit 7")

    registry.start(process.handle)

    assert watcher.finished.wait(10.0)
    assert watcher.exits() == [7]
    assert process.exit_code == 7


def test_queued_input_reaches_stdin(launcher: ConsoleLauncher) -> None:
    registry, watcher = _registry(launcher)
    process = registry.create_process("read first; read second; echo \"$second $first\"")

    registry.enqueue_input(process.handle, "one\n")
    registry.start(process.handle)
    registry.enqueue_input(process.handle, "two\n")

    assert watcher.finished.wait(10.0)
    assert watcher.output() == "two one\n"
    assert watcher.exits() == [0]


def test_interrupt_terminates_long_running_process(launcher: ConsoleLauncher) -> None:
    registry, watcher = _registry(launcher)
    process = registry.create_process("sleep 30")
    registry.start(process.handle)
    time.sleep(0.2)

    started = time.monotonic()
    registry.interrupt(process.handle)

    assert watcher.finished.wait(10.0)
    assert time.monotonic() - started < 5.0
    assert len(watcher.exits()) == 1
    assert watcher.exits()[0] != 0


def test_interrupt_before_first_poll_sends_no_input(launcher: ConsoleLauncher) -> None:
    registry, watcher = _registry(launcher)
    process = registry.create_process("cat")
    registry.enqueue_input(process.handle, "never\n")
    registry.interrupt(process.handle)

    registry.start(process.handle)

    assert watcher.finished.wait(10.0)
    assert watcher.output() == ""
    assert len(watcher.exits()) == 1


def test_process_ignoring_sigterm_is_killed() -> None:
    impatient = ConsoleLauncher(poll_interval=0.01, terminate_timeout=0.5)
    registry, watcher = _registry(impatient)
    process = registry.create_process("trap '' TERM; echo ready; while :; do sleep 0.1; done")
    registry.start(process.handle)
    deadline = time.monotonic() + 5.0
    while "ready" not in watcher.output() and time.monotonic() < deadline:
        time.sleep(0.02)

    registry.interrupt(process.handle)

    assert watcher.finished.wait(10.0)
    assert watcher.exits() == [-9]
    impatient.stop_all()


def test_missing_binary_without_shell_fails_to_launch(launcher: ConsoleLauncher) -> None:
    registry, _ = _registry(launcher, ProcessOptions(use_shell=False))
    process = registry.create_process("definitely-not-a-real-binary-xyz")

    with pytest.raises(ConsoleError) as exc:
        registry.start(process.handle)

    assert exc.value.kind == ErrorKind.LAUNCH_FAILED
    assert process.started is False


def test_pty_mode_runs_under_a_terminal(launcher: ConsoleLauncher) -> None:
    pytest.importorskip("ptyprocess")
    registry, watcher = _registry(launcher, ProcessOptions(mode=ProcessMode.PTY))
    process = registry.create_process("test -t 1 && echo tty")

    registry.start(process.handle)

    assert watcher.finished.wait(10.0)
    assert "tty" in watcher.output()
    assert watcher.output(OutputStream.STDERR) == ""
    assert watcher.exits() == [0]

from __future__ import annotations

import io
import threading
import time
from pathlib import Path

import pytest

from consolesupervisor import cli
from consolesupervisor.console import ProcessCallbacks, ProcessMode, ProcessOptions
from consolesupervisor.errors import ConsoleError, ErrorKind, ExitCode


class _Ops:
    def __init__(self) -> None:
        self.writes: list[str] = []
        self.terminated = False

    def write_stdin(self, data: str) -> None:
        self.writes.append(data)

    def terminate(self) -> None:
        self.terminated = True

    def poll(self) -> int | None:
        return None


class _ScriptedLauncher:
    """Plays back a process run on a background thread, like a real driver."""

    def __init__(
        self,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        until_interrupted: bool = False,
        echo_input: bool = False,
    ) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.until_interrupted = until_interrupted
        self.echo_input = echo_input
        self.launches: list[tuple[str, ProcessOptions]] = []

    def launch(self, command: str, options: ProcessOptions, callbacks: ProcessCallbacks) -> None:
        self.launches.append((command, options))
        threading.Thread(target=self._play, args=(callbacks,), daemon=True).start()

    def _play(self, callbacks: ProcessCallbacks) -> None:
        ops = _Ops()
        while callbacks.on_continue(ops) and self.until_interrupted:
            time.sleep(0.005)
        if self.echo_input:
            callbacks.on_stdout(ops, "".join(ops.writes))
        if self.stdout:
            callbacks.on_stdout(ops, self.stdout)
        if self.stderr:
            callbacks.on_stderr(ops, self.stderr)
        callbacks.on_exit(-15 if ops.terminated else self.exit_code)


class _FailingLauncher:
    def launch(self, command: str, options: ProcessOptions, callbacks: ProcessCallbacks) -> None:
        raise ConsoleError(f"Unable to start: {command}", kind=ErrorKind.LAUNCH_FAILED, hint="Check PATH")


class _StepClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def _namespace(tmp_path: Path, *argv: str):
    return cli.parse_args(["--config", str(tmp_path / "config.toml"), "run", *argv])


def test_run_command_relays_output_and_exit_code(tmp_path: Path) -> None:
    launcher = _ScriptedLauncher(stdout="hello\n", stderr="warn\n", exit_code=3)
    stdout = io.StringIO()
    stderr = io.StringIO()

    code = cli.run_command(_namespace(tmp_path, "echo hello"), launcher=launcher, stdout=stdout, stderr=stderr)

    assert code == 3
    assert stdout.getvalue() == "hello\n"
    assert stderr.getvalue() == "warn\n"


def test_run_command_sends_inputs_in_order(tmp_path: Path) -> None:
    launcher = _ScriptedLauncher(echo_input=True)
    stdout = io.StringIO()

    namespace = _namespace(tmp_path, "cat", "--input", "one\n", "--input", "two\n")
    code = cli.run_command(namespace, launcher=launcher, stdout=stdout, stderr=io.StringIO())

    assert code == 0
    assert stdout.getvalue() == "one\ntwo\n"


def test_run_command_applies_flags_to_options(tmp_path: Path) -> None:
    launcher = _ScriptedLauncher()
    namespace = _namespace(tmp_path, "top", "--pty", "--no-shell", "--cwd", "/srv", "--env", "TERM=xterm")

    cli.run_command(namespace, launcher=launcher, stdout=io.StringIO(), stderr=io.StringIO())

    command, options = launcher.launches[0]
    assert command == "top"
    assert options.mode == ProcessMode.PTY
    assert options.use_shell is False
    assert options.cwd == "/srv"
    assert options.env["TERM"] == "xterm"


def test_run_command_uses_config_defaults(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text(
        'shell = "/bin/bash"\nshell_args = ["-lc"]\n\n[environment]\nFROM_CONFIG = "yes"\n',
        encoding="utf-8",
    )
    launcher = _ScriptedLauncher()
    namespace = _namespace(tmp_path, "ls", "--env", "EXTRA=1")

    cli.run_command(namespace, launcher=launcher, stdout=io.StringIO(), stderr=io.StringIO())

    _, options = launcher.launches[0]
    assert options.shell == "/bin/bash"
    assert options.shell_args == ("-lc",)
    assert options.env == {"FROM_CONFIG": "yes", "EXTRA": "1"}


def test_run_command_interrupts_after_timeout(tmp_path: Path) -> None:
    launcher = _ScriptedLauncher(until_interrupted=True)
    namespace = _namespace(tmp_path, "sleep 100", "--timeout", "0.5")

    code = cli.run_command(
        namespace,
        launcher=launcher,
        stdout=io.StringIO(),
        stderr=io.StringIO(),
        clock=_StepClock(),
    )

    assert code == int(ExitCode.INTERRUPTED)


def test_run_command_maps_signal_exit_to_shell_convention(tmp_path: Path) -> None:
    launcher = _ScriptedLauncher(exit_code=-9)

    code = cli.run_command(_namespace(tmp_path, "crash"), launcher=launcher, stdout=io.StringIO(), stderr=io.StringIO())

    assert code == 137


def test_run_command_raises_launch_failures(tmp_path: Path) -> None:
    with pytest.raises(ConsoleError) as exc:
        cli.run_command(_namespace(tmp_path, "missing"), launcher=_FailingLauncher())

    assert exc.value.kind == ErrorKind.LAUNCH_FAILED
    assert exc.value.hint == "Check PATH"


def test_main_reports_launch_failure_with_exit_code(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli, "default_log_path", lambda: tmp_path / "cli.log")

    code = cli.main(["--config", str(tmp_path / "c.toml"), "run", "missing"], launcher=_FailingLauncher())

    assert code == int(ExitCode.LAUNCH_ERROR)
    err = capsys.readouterr().err
    assert "Error: Unable to start: missing" in err
    assert "Next step: Check PATH" in err


def test_main_returns_process_exit_code(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli, "default_log_path", lambda: tmp_path / "cli.log")
    launcher = _ScriptedLauncher(stdout="done\n", exit_code=0)

    code = cli.main(["--config", str(tmp_path / "c.toml"), "run", "true"], launcher=launcher)

    assert code == 0
    assert capsys.readouterr().out == "done\n"


def test_main_hides_unexpected_errors(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli, "default_log_path", lambda: tmp_path / "cli.log")

    def explode(*_args: object, **_kwargs: object) -> int:
        raise RuntimeError("kaboom")

    monkeypatch.setattr(cli, "run_command", explode)

    code = cli.main(["--config", str(tmp_path / "c.toml"), "run", "true"])

    assert code == int(ExitCode.RUNTIME_ERROR)
    err = capsys.readouterr().err
    assert "Unexpected runtime failure" in err
    assert "RuntimeError" in err
    assert "kaboom" not in err
    assert "Traceback" not in err
    log_text = (tmp_path / "cli.log").read_text(encoding="utf-8")
    assert "RuntimeError: kaboom" in log_text


def test_main_handles_keyboard_interrupt(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(cli, "default_log_path", lambda: tmp_path / "cli.log")

    def interrupted(*_args: object, **_kwargs: object) -> int:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "run_command", interrupted)

    assert cli.main(["run", "true"]) == int(ExitCode.INTERRUPTED)

"""OS process layer: pipe and pty children driven by ``ProcessDriver``."""

from __future__ import annotations

import atexit
import codecs
import logging as py_logging
import os
import shlex
import signal
import subprocess
import sys
import threading
import weakref
from collections.abc import Callable, Mapping
from contextlib import suppress
from typing import IO, TYPE_CHECKING, Any

from consolesupervisor.console.driver import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TERMINATE_TIMEOUT,
    ChildProcess,
    ProcessDriver,
)
from consolesupervisor.console.models import OutputStream, ProcessCallbacks, ProcessMode, ProcessOptions
from consolesupervisor.errors import ConsoleError, ErrorKind

if TYPE_CHECKING:
    from consolesupervisor.config import SupervisorConfig

logger = py_logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"
DEFAULT_READ_CHUNK_SIZE = 4096

Popen = Callable[..., Any]
PtySpawn = Callable[[list[str], str | None, dict[str, str], tuple[int, int]], Any]


def build_command_argv(command: str, options: ProcessOptions) -> list[str]:
    if not command.strip():
        raise ConsoleError(
            "Command cannot be empty.",
            kind=ErrorKind.INVALID_REQUEST,
            hint="Provide the command line to run.",
        )
    if options.use_shell:
        return [options.shell, *options.shell_args, command]
    try:
        argv = shlex.split(command)
    except ValueError as exc:
        raise ConsoleError(
            f"Cannot parse command line: {command}",
            kind=ErrorKind.INVALID_REQUEST,
            hint=str(exc) or "Check quoting in the command.",
        ) from exc
    return argv


def build_environment(extra: Mapping[str, str]) -> dict[str, str]:
    env = {**os.environ, **dict(extra)}
    env.pop("PROMPT_COMMAND", None)
    return env


class PipeChild:
    """``subprocess.Popen`` child with separate stdin/stdout/stderr pipes."""

    def __init__(self, process: Any, *, encoding: str = "utf-8") -> None:
        self._process = process
        self._encoding = encoding
        self.pid: int = process.pid
        self._write_lock = threading.Lock()

    def write_stdin(self, data: str) -> None:
        stdin = self._process.stdin
        if stdin is None:
            raise ConsoleError(
                f"Process stdin is not available pid={self.pid}.",
                kind=ErrorKind.RUNTIME,
                hint="Launch the process with stdin redirected.",
            )
        with self._write_lock:
            try:
                stdin.write(data.encode(self._encoding, errors="replace"))
                stdin.flush()
            except (BrokenPipeError, ValueError, OSError) as exc:
                raise ConsoleError(
                    f"Failed to write to process stdin pid={self.pid}.",
                    kind=ErrorKind.RUNTIME,
                    hint=str(exc) or "The process closed its input.",
                ) from exc

    def terminate(self) -> None:
        self._signal(signal.SIGTERM)

    def kill(self) -> None:
        self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))

    def poll(self) -> int | None:
        return self._process.poll()

    def close(self) -> None:
        for stream in (self._process.stdin, self._process.stdout, self._process.stderr):
            if stream is not None:
                with suppress(OSError, ValueError):
                    stream.close()

    def reader(self, stream: OutputStream) -> IO[bytes] | None:
        return self._process.stderr if stream == OutputStream.STDERR else self._process.stdout

    def _signal(self, signum: int) -> None:
        if self._process.poll() is not None:
            return
        if IS_WINDOWS:
            with suppress(OSError):
                if signum == signal.SIGTERM:
                    self._process.terminate()
                else:
                    self._process.kill()
            return
        try:
            os.killpg(os.getpgid(self.pid), signum)
        except ProcessLookupError:
            logger.debug("Process group already gone pid=%s", self.pid)
        except PermissionError:
            with suppress(OSError):
                self._process.send_signal(signum)


class PtyChild:
    """``ptyprocess`` child; the terminal merges stderr into stdout."""

    def __init__(self, process: Any, *, encoding: str = "utf-8") -> None:
        self._process = process
        self._encoding = encoding
        self.pid: int = process.pid
        self._write_lock = threading.Lock()

    def write_stdin(self, data: str) -> None:
        with self._write_lock:
            try:
                self._process.write(data.encode(self._encoding, errors="replace"))
            except (EOFError, OSError) as exc:
                raise ConsoleError(
                    f"Failed to write to terminal pid={self.pid}.",
                    kind=ErrorKind.RUNTIME,
                    hint=str(exc) or "The terminal is closed.",
                ) from exc

    def terminate(self) -> None:
        self._signal(signal.SIGTERM)

    def kill(self) -> None:
        self._signal(signal.SIGKILL)

    def poll(self) -> int | None:
        try:
            if self._process.isalive():
                return None
        except Exception:
            logger.debug("isalive failed pid=%s", self.pid, exc_info=True)
        status = getattr(self._process, "exitstatus", None)
        if status is not None:
            return int(status)
        signum = getattr(self._process, "signalstatus", None)
        return -int(signum) if signum else -1

    def close(self) -> None:
        with suppress(Exception):
            self._process.close()

    def read(self, size: int) -> bytes:
        try:
            return bytes(self._process.read(size))
        except EOFError:
            return b""

    def _signal(self, signum: int) -> None:
        try:
            self._process.kill(signum)
        except (ProcessLookupError, OSError):
            logger.debug("Terminal process already gone pid=%s", self.pid)


def _spawn_with_ptyprocess(
    argv: list[str], cwd: str | None, env: dict[str, str], dimensions: tuple[int, int]
) -> Any:
    try:
        from ptyprocess import PtyProcess
    except ImportError as exc:
        raise ConsoleError(
            "ptyprocess backend is unavailable.",
            kind=ErrorKind.LAUNCH_FAILED,
            hint="Install the 'pty' extra or use pipe mode.",
        ) from exc
    return PtyProcess.spawn(argv, cwd=cwd, env=env, dimensions=dimensions)


def _read_loop(
    read: Callable[[int], bytes],
    stream: OutputStream,
    driver: ProcessDriver,
    *,
    encoding: str,
    chunk_size: int,
) -> None:
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    try:
        while True:
            try:
                data = read(chunk_size)
            except (OSError, ValueError):
                break
            if not data:
                break
            driver.feed(stream, decoder.decode(data))
        driver.feed(stream, decoder.decode(b"", final=True))
    finally:
        driver.stream_closed(stream)


_LIVE_LAUNCHERS: weakref.WeakSet[ConsoleLauncher] = weakref.WeakSet()


def _stop_live_launchers() -> None:
    for launcher in list(_LIVE_LAUNCHERS):
        launcher.stop_all()


atexit.register(_stop_live_launchers)


class ConsoleLauncher:
    """Spawns children for console processes and starts their drivers."""

    def __init__(
        self,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        popen: Popen | None = None,
        pty_spawn: PtySpawn | None = None,
    ) -> None:
        self.poll_interval = poll_interval
        self.terminate_timeout = terminate_timeout
        self.read_chunk_size = read_chunk_size
        self._popen = popen or subprocess.Popen
        self._pty_spawn = pty_spawn or _spawn_with_ptyprocess
        self._drivers: list[ProcessDriver] = []
        self._lock = threading.Lock()
        _LIVE_LAUNCHERS.add(self)

    @classmethod
    def from_config(cls, config: SupervisorConfig) -> ConsoleLauncher:
        return cls(
            poll_interval=config.poll_interval_seconds,
            terminate_timeout=config.terminate_timeout_seconds,
            read_chunk_size=config.read_chunk_size,
        )

    def launch(self, command: str, options: ProcessOptions, callbacks: ProcessCallbacks) -> None:
        argv = build_command_argv(command, options)
        env = build_environment(options.env)
        if options.mode == ProcessMode.PTY:
            self._launch_pty(argv, options, env, callbacks)
        else:
            self._launch_pipe(argv, options, env, callbacks)

    def active_drivers(self) -> list[ProcessDriver]:
        with self._lock:
            self._drivers = [driver for driver in self._drivers if not driver.done]
            return list(self._drivers)

    def stop_all(self) -> None:
        for driver in self.active_drivers():
            with suppress(Exception):
                driver.child.terminate()
        for driver in self.active_drivers():
            if not driver.join(self.terminate_timeout):
                with suppress(Exception):
                    driver.child.kill()

    def _launch_pipe(
        self,
        argv: list[str],
        options: ProcessOptions,
        env: dict[str, str],
        callbacks: ProcessCallbacks,
    ) -> None:
        kwargs: dict[str, Any] = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        try:
            process = self._popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=options.cwd or None,
                env=env,
                **kwargs,
            )
        except (OSError, ValueError) as exc:
            raise ConsoleError(
                f"Failed to launch process: {argv[0]}",
                kind=ErrorKind.LAUNCH_FAILED,
                hint=str(exc) or "Check the command and working directory.",
            ) from exc

        child = PipeChild(process, encoding=options.encoding)
        driver = self._driver(child, callbacks, (OutputStream.STDOUT, OutputStream.STDERR))
        for stream in (OutputStream.STDOUT, OutputStream.STDERR):
            pipe = child.reader(stream)
            if pipe is None:
                driver.stream_closed(stream)
                continue
            read = getattr(pipe, "read1", pipe.read)
            self._start_reader(read, stream, driver, options.encoding)
        driver.start()
        logger.info("Launched pipe process pid=%s argv=%s", child.pid, argv)

    def _launch_pty(
        self,
        argv: list[str],
        options: ProcessOptions,
        env: dict[str, str],
        callbacks: ProcessCallbacks,
    ) -> None:
        try:
            process = self._pty_spawn(argv, options.cwd or None, env, options.pty_size)
        except ConsoleError:
            raise
        except Exception as exc:
            raise ConsoleError(
                f"Failed to launch terminal process: {argv[0]}",
                kind=ErrorKind.LAUNCH_FAILED,
                hint=str(exc) or "Check the command and working directory.",
            ) from exc

        child = PtyChild(process, encoding=options.encoding)
        driver = self._driver(child, callbacks, (OutputStream.STDOUT,))
        self._start_reader(child.read, OutputStream.STDOUT, driver, options.encoding)
        driver.start()
        logger.info("Launched pty process pid=%s argv=%s", child.pid, argv)

    def _driver(
        self,
        child: ChildProcess,
        callbacks: ProcessCallbacks,
        streams: tuple[OutputStream, ...],
    ) -> ProcessDriver:
        driver = ProcessDriver(
            child,
            callbacks,
            streams=streams,
            poll_interval=self.poll_interval,
            terminate_timeout=self.terminate_timeout,
        )
        with self._lock:
            self._drivers.append(driver)
        return driver

    def _start_reader(
        self,
        read: Callable[[int], bytes],
        stream: OutputStream,
        driver: ProcessDriver,
        encoding: str,
    ) -> None:
        thread = threading.Thread(
            target=_read_loop,
            args=(read, stream, driver),
            kwargs={"encoding": encoding, "chunk_size": self.read_chunk_size},
            name=f"console-reader-{driver.child.pid}-{stream.value}",
            daemon=True,
        )
        thread.start()

"""Serial callback dispatch for one supervised child process."""

from __future__ import annotations

import logging as py_logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Protocol

from consolesupervisor.console.models import OutputStream, ProcessCallbacks

logger = py_logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_TERMINATE_TIMEOUT = 2.0


class ChildProcess(Protocol):
    """A live child as seen by the driver: process operations plus teardown."""

    pid: int

    def write_stdin(self, data: str) -> None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    def poll(self) -> int | None: ...

    def close(self) -> None: ...


_Item = tuple[OutputStream, str | None]


class ProcessDriver:
    """Runs the continuation/output/exit cycle for one child on its own thread.

    Reader threads call ``feed``/``stream_closed``; only the driver thread ever
    invokes the process callbacks, so they are serialized per child.
    ``on_continue`` is not called again once it returns False, and
    ``on_exit`` fires exactly once.
    """

    def __init__(
        self,
        child: ChildProcess,
        callbacks: ProcessCallbacks,
        *,
        streams: tuple[OutputStream, ...] = (OutputStream.STDOUT, OutputStream.STDERR),
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ) -> None:
        self.child = child
        self._callbacks = callbacks
        self._open_streams = len(streams)
        self._poll_interval = poll_interval
        self._terminate_timeout = terminate_timeout
        self._clock = clock
        self._items: queue.Queue[_Item] = queue.Queue()
        self._done = threading.Event()
        self._thread = threading.Thread(
            target=self.run,
            name=name or f"console-driver-{child.pid}",
            daemon=True,
        )
        self.exit_code: int | None = None

    def feed(self, stream: OutputStream, text: str) -> None:
        if text:
            self._items.put((stream, text))

    def stream_closed(self, stream: OutputStream) -> None:
        self._items.put((stream, None))

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def run(self) -> None:
        polling = True
        kill_deadline: float | None = None
        exited_at: float | None = None
        code: int | None = None
        try:
            while True:
                # No continuation checks once the child is gone; its stdin is dead.
                if polling and code is None:
                    polling = self._continue()
                    if not polling:
                        kill_deadline = self._clock() + self._terminate_timeout

                self._dispatch(block=True)

                if code is None:
                    code = self.child.poll()
                    if code is not None:
                        exited_at = self._clock()
                if code is not None:
                    if self._open_streams <= 0:
                        break
                    # A grandchild may keep the pipes open after the child exits.
                    if exited_at is not None and self._clock() - exited_at > self._terminate_timeout:
                        logger.warning("Output streams still open after exit pid=%s; detaching", self.child.pid)
                        break
                elif kill_deadline is not None and self._clock() >= kill_deadline:
                    logger.warning("Child ignored termination pid=%s; killing", self.child.pid)
                    self.child.kill()
                    kill_deadline = None
        finally:
            self._dispatch(block=False)
            if code is None:
                code = self._reap()
            self._close()
            self.exit_code = code
            self._exit(code)
            self._done.set()

    def _continue(self) -> bool:
        try:
            return bool(self._callbacks.on_continue(self.child))
        except Exception:
            logger.exception("Continuation callback failed pid=%s; terminating", self.child.pid)
            self._terminate_quietly()
            return False

    def _dispatch(self, *, block: bool) -> None:
        try:
            item = self._items.get(timeout=self._poll_interval) if block else self._items.get_nowait()
        except queue.Empty:
            return
        while True:
            self._deliver(item)
            try:
                item = self._items.get_nowait()
            except queue.Empty:
                return

    def _deliver(self, item: _Item) -> None:
        stream, text = item
        if text is None:
            self._open_streams -= 1
            return
        handler = self._callbacks.on_stderr if stream == OutputStream.STDERR else self._callbacks.on_stdout
        try:
            handler(self.child, text)
        except Exception:
            logger.exception("Output callback failed pid=%s stream=%s", self.child.pid, stream.value)

    def _exit(self, code: int) -> None:
        try:
            self._callbacks.on_exit(code)
        except Exception:
            logger.exception("Exit callback failed pid=%s", self.child.pid)

    def _reap(self) -> int:
        # Reached only when the loop itself failed; make sure the child is gone.
        self._terminate_quietly()
        deadline = self._clock() + self._terminate_timeout
        while self._clock() < deadline:
            code = self.child.poll()
            if code is not None:
                return code
            time.sleep(self._poll_interval)
        try:
            self.child.kill()
        except OSError:
            logger.debug("Kill failed during reap pid=%s", self.child.pid)
        code = self.child.poll()
        return code if code is not None else -1

    def _terminate_quietly(self) -> None:
        try:
            self.child.terminate()
        except Exception:
            logger.exception("Terminate failed pid=%s", self.child.pid)

    def _close(self) -> None:
        try:
            self.child.close()
        except OSError:
            logger.debug("Close failed pid=%s", self.child.pid)

"""Console output/exit events relayed to session observers."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from consolesupervisor.console.models import OutputStream

logger = py_logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsoleOutputEvent:
    handle: str
    output: str
    stream: OutputStream = OutputStream.STDOUT

    @property
    def is_error(self) -> bool:
        return self.stream == OutputStream.STDERR


@dataclass(frozen=True)
class ConsoleExitEvent:
    handle: str
    exit_code: int


ConsoleEvent = ConsoleOutputEvent | ConsoleExitEvent
ConsoleListener = Callable[[ConsoleEvent], None]


class ConsoleEventEmitter:
    """Fan-out of console events to registered listeners.

    Listeners run on the thread that emits, which is the driver thread of the
    process that produced the event. A failing listener is logged and does not
    stop delivery to the others.
    """

    def __init__(self, *, keep_history: bool = False) -> None:
        self._listeners: list[ConsoleListener] = []
        self._history: list[ConsoleEvent] = []
        self._keep_history = keep_history
        self._lock = threading.Lock()

    def subscribe(self, listener: ConsoleListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit_output(self, handle: str, output: str, stream: OutputStream) -> None:
        self._emit(ConsoleOutputEvent(handle=handle, output=output, stream=stream))

    def emit_exit(self, handle: str, exit_code: int) -> None:
        self._emit(ConsoleExitEvent(handle=handle, exit_code=exit_code))

    def history(self) -> list[ConsoleEvent]:
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def _emit(self, event: ConsoleEvent) -> None:
        with self._lock:
            if self._keep_history:
                self._history.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Console listener failed for handle=%s", event.handle)

"""Session runtime: RPC method table and module bookkeeping."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable, Mapping

from typing_extensions import NotRequired, TypedDict

from consolesupervisor.errors import ConsoleError, ErrorKind

logger = py_logging.getLogger(__name__)


class RpcErrorPayload(TypedDict):
    kind: str
    message: str
    hint: str


class RpcResponse(TypedDict):
    result: NotRequired[object]
    error: NotRequired[RpcErrorPayload]


RpcHandler = Callable[[Mapping[str, object]], RpcResponse]


def ok(result: object = None) -> RpcResponse:
    return RpcResponse(result=result)


def failure(error: ConsoleError) -> RpcResponse:
    payload = error.to_payload()
    return RpcResponse(error=RpcErrorPayload(kind=payload["kind"], message=payload["message"], hint=payload["hint"]))


class SessionRuntime:
    """The surrounding session a subsystem registers itself into.

    Transport to a remote client is not handled here; the transport calls
    ``call_rpc`` with a method name and the decoded params.
    """

    def __init__(self) -> None:
        self._methods: dict[str, RpcHandler] = {}
        self._modules: set[str] = set()
        self._lock = threading.Lock()

    def register_module(self, name: str) -> None:
        with self._lock:
            if name in self._modules:
                raise ConsoleError(
                    f"Module already initialized: {name}",
                    kind=ErrorKind.ALREADY_INITIALIZED,
                    hint="Initialize each session module once.",
                )
            self._modules.add(name)
        logger.info("Registered session module: %s", name)

    def has_module(self, name: str) -> bool:
        with self._lock:
            return name in self._modules

    def register_rpc_method(self, name: str, handler: RpcHandler) -> None:
        with self._lock:
            if name in self._methods:
                raise ConsoleError(
                    f"RPC method already registered: {name}",
                    kind=ErrorKind.ALREADY_INITIALIZED,
                    hint="Use a unique method name.",
                )
            self._methods[name] = handler
        logger.debug("Registered RPC method: %s", name)

    def has_method(self, name: str) -> bool:
        with self._lock:
            return name in self._methods

    def method_names(self) -> list[str]:
        with self._lock:
            return sorted(self._methods)

    def call_rpc(self, name: str, params: Mapping[str, object] | None = None) -> RpcResponse:
        with self._lock:
            handler = self._methods.get(name)
        if handler is None:
            return failure(
                ConsoleError(
                    f"Unknown RPC method: {name}",
                    kind=ErrorKind.UNKNOWN_METHOD,
                    hint="Check the method name against the registered list.",
                )
            )
        try:
            return handler(params or {})
        except ConsoleError as exc:
            logger.info("RPC %s failed kind=%s: %s", name, exc.kind.value, exc.message)
            return failure(exc)

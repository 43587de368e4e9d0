"""Registers the console process subsystem with a session runtime."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Mapping

from consolesupervisor.console.registry import ConsoleProcessRegistry
from consolesupervisor.errors import ConsoleError, ErrorKind
from consolesupervisor.session import RpcResponse, SessionRuntime, ok

logger = py_logging.getLogger(__name__)

MODULE_NAME = "console_process"


def _param(params: Mapping[str, object], name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str):
        raise ConsoleError(
            f"Missing or invalid '{name}' parameter.",
            kind=ErrorKind.INVALID_REQUEST,
            hint=f"Pass '{name}' as a string.",
        )
    return value


def initialize(runtime: SessionRuntime, registry: ConsoleProcessRegistry) -> None:
    """Expose ``registry`` to remote callers through ``runtime``'s RPC table."""
    runtime.register_module(MODULE_NAME)

    def process_start(params: Mapping[str, object]) -> RpcResponse:
        process = registry.start(_param(params, "handle"))
        return ok(process.snapshot())

    def process_write_stdin(params: Mapping[str, object]) -> RpcResponse:
        registry.enqueue_input(_param(params, "handle"), _param(params, "input"))
        return ok()

    def process_interrupt(params: Mapping[str, object]) -> RpcResponse:
        registry.interrupt(_param(params, "handle"))
        return ok()

    def process_status(params: Mapping[str, object]) -> RpcResponse:
        return ok(registry.require(_param(params, "handle")).snapshot())

    def process_reap(params: Mapping[str, object]) -> RpcResponse:
        registry.evict(_param(params, "handle"))
        return ok()

    def process_list(params: Mapping[str, object]) -> RpcResponse:
        del params
        return ok([process.snapshot() for process in registry.list_processes()])

    runtime.register_rpc_method("process_start", process_start)
    runtime.register_rpc_method("process_write_stdin", process_write_stdin)
    runtime.register_rpc_method("process_interrupt", process_interrupt)
    runtime.register_rpc_method("process_status", process_status)
    runtime.register_rpc_method("process_reap", process_reap)
    runtime.register_rpc_method("process_list", process_list)
    logger.info("Console process module initialized")

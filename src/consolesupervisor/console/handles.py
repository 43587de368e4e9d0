"""Opaque handle generation for console processes."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Container

from consolesupervisor.errors import ConsoleError, ErrorKind

HANDLE_PREFIX = "cp-"
_MAX_ATTEMPTS = 32

HandleFactory = Callable[[], str]


def new_handle() -> str:
    return f"{HANDLE_PREFIX}{uuid.uuid4().hex}"


def is_valid_handle(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip()) and value == value.strip()


def allocate_handle(taken: Container[str], factory: HandleFactory = new_handle) -> str:
    """Return a handle from ``factory`` that is not in ``taken``.

    A collision means the factory is not random enough (or is a test double);
    after a bounded number of draws the last candidate is reported instead of
    spinning forever.
    """
    candidate = ""
    for _ in range(_MAX_ATTEMPTS):
        candidate = factory()
        if is_valid_handle(candidate) and candidate not in taken:
            return candidate
    raise ConsoleError(
        f"Could not allocate a unique console handle (last candidate: {candidate!r}).",
        kind=ErrorKind.RUNTIME,
        hint="Check the handle factory produces random identifiers.",
    )

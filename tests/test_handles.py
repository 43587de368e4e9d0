from __future__ import annotations

import pytest

from consolesupervisor.console.handles import HANDLE_PREFIX, allocate_handle, is_valid_handle, new_handle
from consolesupervisor.errors import ConsoleError


def test_new_handles_are_prefixed_and_distinct() -> None:
    handles = {new_handle() for _ in range(500)}

    assert len(handles) == 500
    assert all(handle.startswith(HANDLE_PREFIX) for handle in handles)


@pytest.mark.parametrize("value", ["", "   ", " cp-1", "cp-1\n", None, 42])
def test_invalid_handles_are_rejected(value: object) -> None:
    assert is_valid_handle(value) is False


def test_allocate_handle_skips_taken_and_invalid_candidates() -> None:
    candidates = iter(["cp-1", "", "cp-2"])

    assert allocate_handle({"cp-1"}, lambda: next(candidates)) == "cp-2"


def test_allocate_handle_gives_up_on_a_stuck_factory() -> None:
    with pytest.raises(ConsoleError) as exc:
        allocate_handle({"cp-1"}, lambda: "cp-1")

    assert "cp-1" in exc.value.message

#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Invocation data model.

One invocation moves through ``UNMAPPED -> MAPPED -> SUBMITTED`` and ends in
``COMPLETED`` or ``FAILED``. A function reference without an id is unmapped;
``map`` yields a mapped ``FunctionId``; ``put_input`` starts the handle in
``MAPPED`` and moves it to ``SUBMITTED`` once the server accepts the input.
There are no backward transitions, and a handle yields its output exactly once.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Set

from ..utils.exceptions import InvocationStateError, RemoteExecutionError, TimeoutError


class ConnectionState(Enum):
    """
    Lifecycle of the client's channel.
    """
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CLOSED = "closed"


class InvocationState(Enum):
    """
    Lifecycle of a single invocation.
    """
    UNMAPPED = "unmapped"
    MAPPED = "mapped"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"


_VALID_TRANSITIONS: Dict[InvocationState, Set[InvocationState]] = {
    InvocationState.UNMAPPED: {InvocationState.MAPPED, InvocationState.FAILED},
    InvocationState.MAPPED: {InvocationState.SUBMITTED, InvocationState.FAILED},
    InvocationState.SUBMITTED: {InvocationState.COMPLETED, InvocationState.FAILED},
    InvocationState.COMPLETED: set(),
    InvocationState.FAILED: set(),
}


def validate_transition(current: InvocationState, requested: InvocationState) -> None:
    """
    Raise ``InvocationStateError`` unless ``current -> requested`` is allowed.
    """
    if requested not in _VALID_TRANSITIONS[current]:
        raise InvocationStateError(
            f"Invalid invocation transition: {current.value} -> {requested.value}",
            current_state=current.value,
            requested_state=requested.value,
        )


@dataclass(frozen=True)
class FunctionId:
    """
    Stable identifier of a deployed function, as returned by ``map``.
    """
    function_id: str
    app_name: str = ""
    function_name: str = ""

    @property
    def state(self) -> InvocationState:
        return InvocationState.MAPPED if self.function_id else InvocationState.UNMAPPED

    def __str__(self) -> str:
        return self.function_id


@dataclass
class InvocationHandle:
    """
    Correlates one submitted input with its eventual output.

    Only the client mutates a handle. It starts ``MAPPED``, is ``SUBMITTED``
    while the output is outstanding and becomes terminal once ``get_output``
    returns or fails.
    """
    function_id: str
    function_call_id: str = ""
    input_id: str = ""
    method_name: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.now)
    state: InvocationState = InvocationState.MAPPED

    @property
    def is_pending(self) -> bool:
        return self.state == InvocationState.SUBMITTED

    def transition(self, new_state: InvocationState) -> None:
        validate_transition(self.state, new_state)
        self.state = new_state

    def ensure_pending(self) -> None:
        """
        Refuse a handle that is not awaiting output (never submitted, or
        already consumed).
        """
        if not self.is_pending:
            raise InvocationStateError(
                f"Handle for function call '{self.function_call_id}' is not awaiting output",
                current_state=self.state.value,
                requested_state=InvocationState.COMPLETED.value,
            )


@dataclass(frozen=True)
class InvocationResult:
    """
    Output of one invocation.

    ``data`` is the opaque encoded return value. On failure it is empty and
    ``exception``/``exitcode``/``traceback`` describe what went wrong.
    """
    data: bytes
    success: bool
    status: str = "success"
    function_call_id: str = ""
    input_id: str = ""
    data_format: int = 0
    exception: str = ""
    exitcode: int = 0
    traceback: str = ""

    def raise_for_status(self) -> "InvocationResult":
        """
        Raise the matching error for a failed result, else return self.
        """
        if self.success:
            return self
        if self.status == "timeout":
            raise TimeoutError(
                self.exception or "Remote function timed out",
                operation=f"remote:{self.function_call_id}",
            )
        if self.exception:
            message = f"Remote exception: {self.exception}"
        elif self.exitcode:
            message = f"Remote exit code: {self.exitcode}"
        else:
            message = f"Remote function finished with status '{self.status}'"
        raise RemoteExecutionError(
            message,
            function_call_id=self.function_call_id,
            remote_exception=self.exception,
            exitcode=self.exitcode,
            remote_traceback=self.traceback,
        )

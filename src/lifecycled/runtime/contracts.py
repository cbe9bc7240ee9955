from __future__ import annotations

import queue
from enum import Enum
from typing import Protocol

from lifecycled.core.context import RunContext
from lifecycled.core.models import Notice


class Listener(Protocol):
    """A source of termination notices.

    ``start`` blocks until the listener has pushed one notice, the scope is
    cancelled (both return normally) or a structural failure occurs (raises).
    ``teardown`` releases whatever ``start`` acquired and is called exactly
    once after ``start`` returns.
    """

    @property
    def kind(self) -> str:
        ...

    def start(self, ctx: RunContext, notices: "queue.Queue[Notice]") -> None:
        ...

    def teardown(self) -> None:
        ...


class Handler(Protocol):
    """Executes the external action for a termination notice."""

    def execute(self, ctx: RunContext, instance_id: str, transition: str) -> None:
        ...


class DaemonState(str, Enum):
    """States of one daemon run."""

    IDLE = "idle"
    LISTENING = "listening"
    NOTICE_RECEIVED = "notice_received"
    ALL_LISTENERS_EXITED = "all_listeners_exited"
    CANCELED = "canceled"
    HANDLER_RUNNING = "handler_running"
    COMPLETING = "completing"
    DONE = "done"


class DaemonEvent(str, Enum):
    """Events that drive daemon state transitions."""

    START = "start"
    NOTICE = "notice"
    LISTENERS_EXITED = "listeners_exited"
    CANCEL = "cancel"
    HANDLER_START = "handler_start"
    HANDLER_END = "handler_end"
    FINISH = "finish"


def transition_daemon_state(current: DaemonState, event: DaemonEvent) -> DaemonState:
    """Compute the next daemon state for a given event.

    A run that ends without a notice (all listeners exited, or cancelled)
    finishes directly. Invalid transitions raise ValueError.
    """

    if current == DaemonState.IDLE:
        if event == DaemonEvent.START:
            return DaemonState.LISTENING
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    if current == DaemonState.LISTENING:
        if event == DaemonEvent.NOTICE:
            return DaemonState.NOTICE_RECEIVED
        if event == DaemonEvent.LISTENERS_EXITED:
            return DaemonState.ALL_LISTENERS_EXITED
        if event == DaemonEvent.CANCEL:
            return DaemonState.CANCELED
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    if current == DaemonState.NOTICE_RECEIVED:
        if event == DaemonEvent.HANDLER_START:
            return DaemonState.HANDLER_RUNNING
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    if current in {DaemonState.ALL_LISTENERS_EXITED, DaemonState.CANCELED}:
        if event == DaemonEvent.FINISH:
            return DaemonState.DONE
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    if current == DaemonState.HANDLER_RUNNING:
        if event == DaemonEvent.HANDLER_END:
            return DaemonState.COMPLETING
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    if current == DaemonState.COMPLETING:
        if event == DaemonEvent.FINISH:
            return DaemonState.DONE
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    if current == DaemonState.DONE:
        raise ValueError(f"Invalid daemon transition: {current} -> {event}")

    raise ValueError(f"Unknown daemon state: {current}")

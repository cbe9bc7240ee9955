"""Notice listeners, handler execution and the coordinating daemon."""

from lifecycled.runtime.autoscaling import AutoscalingListener
from lifecycled.runtime.contracts import (
    DaemonEvent,
    DaemonState,
    Handler,
    Listener,
    transition_daemon_state,
)
from lifecycled.runtime.daemon import Daemon, HandlerOutcome
from lifecycled.runtime.handler import FileHandler
from lifecycled.runtime.lifecycle import LifecycleActionKeeper
from lifecycled.runtime.spot import SpotListener

__all__ = [
    "AutoscalingListener",
    "Daemon",
    "DaemonEvent",
    "DaemonState",
    "FileHandler",
    "Handler",
    "HandlerOutcome",
    "LifecycleActionKeeper",
    "Listener",
    "SpotListener",
    "transition_daemon_state",
]

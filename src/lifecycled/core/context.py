from __future__ import annotations

import threading
from typing import List, Optional


class RunContext:
    """Cancellation scope for one daemon run.

    Cancelling a scope cancels every child derived from it; cancelling a child
    never touches its parent. A scope is never reused once cancelled.
    """

    def __init__(self, parent: Optional["RunContext"] = None) -> None:
        self.parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List[RunContext] = []

        if parent is not None:
            parent._adopt(self)

    def child(self) -> "RunContext":
        """Derive a scope that is cancelled together with this one."""
        return RunContext(parent=self)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)

        for child in children:
            child.cancel()

    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; returns True once the scope is cancelled."""
        return self._event.wait(timeout)

    def _adopt(self, child: "RunContext") -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.append(child)

        if cancelled:
            child.cancel()

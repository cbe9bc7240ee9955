from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import IO, List, Optional, Sequence

from lifecycled.core.context import RunContext
from lifecycled.utils.diagnostics import HandlerError

WAIT_INTERVAL_SECONDS = 0.2


class FileHandler:
    """Runs a handler program with ``instance_id transition [args...]``.

    The program inherits the daemon's environment; stdout and stderr both go
    to ``stream`` (the daemon's stderr unless given). When the run is cancelled
    the process receives SIGTERM, but its exit status still decides the outcome.
    """

    def __init__(
        self,
        path: Path,
        args: Optional[Sequence[str]] = None,
        stream: Optional[IO] = None,
    ) -> None:
        self.path = Path(path)
        self.args: List[str] = list(args or [])
        self.stream = stream

    def command(self, instance_id: str, transition: str) -> List[str]:
        return [str(self.path), instance_id, transition, *self.args]

    def execute(self, ctx: RunContext, instance_id: str, transition: str) -> None:
        stream = self.stream if self.stream is not None else sys.stderr

        try:
            process = subprocess.Popen(
                self.command(instance_id, transition),
                env=os.environ.copy(),
                stdout=stream,
                stderr=stream,
            )
        except OSError as exc:
            raise HandlerError(f"Failed to start {self.path}: {exc}") from exc

        signalled = False
        while True:
            try:
                returncode = process.wait(timeout=WAIT_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if ctx.cancelled() and not signalled:
                    process.terminate()
                    signalled = True

        if returncode != 0:
            raise HandlerError(f"{self.path} exited unsuccessfully", returncode=returncode)

from __future__ import annotations

import queue
from datetime import datetime

from lifecycled.core.context import RunContext
from lifecycled.core.models import Notice, SpotTermination
from lifecycled.infrastructure.metadata import InstanceMetadata
from lifecycled.utils.diagnostics import MetadataError, MetadataNotFoundError, MetadataUnavailableError
from lifecycled.utils.logs import FieldLogger

TERMINATION_TIME_KEY = "spot/termination-time"


def parse_termination_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp; a timezone offset is required."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp '{value}' has no timezone offset")
    return parsed


class SpotListener:
    """Polls instance metadata for a spot termination time."""

    kind = "spot"

    def __init__(
        self,
        instance_id: str,
        metadata: InstanceMetadata,
        logger: FieldLogger,
        interval: float = 5.0,
    ) -> None:
        self.instance_id = instance_id
        self.metadata = metadata
        self.interval = interval
        self.log = logger.bind(listener=self.kind)

    def start(self, ctx: RunContext, notices: "queue.Queue[Notice]") -> None:
        if not self.metadata.available():
            raise MetadataUnavailableError("ec2 metadata is not available")

        while not ctx.wait(self.interval):
            self.log.debug("Polling ec2 metadata for spot termination notices")

            try:
                value = self.metadata.get(TERMINATION_TIME_KEY)
            except MetadataNotFoundError:
                continue
            except MetadataError as exc:
                self.log.bind(error=str(exc)).warning("Failed to get spot termination")
                continue

            if not value.strip():
                self.log.error("Empty response from metadata")
                continue

            try:
                termination_time = parse_termination_time(value)
            except ValueError as exc:
                self.log.bind(error=str(exc)).error("Failed to parse termination time")
                continue

            notices.put_nowait(
                SpotTermination(instance_id=self.instance_id, termination_time=termination_time)
            )
            return

    def teardown(self) -> None:
        """Nothing to release."""

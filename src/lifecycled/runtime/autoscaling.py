from __future__ import annotations

import queue
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from lifecycled.core.context import RunContext
from lifecycled.core.models import AUTOSCALING_TERMINATING, Envelope, LifecycleMessage, Notice
from lifecycled.infrastructure.queue import RelayQueue
from lifecycled.utils.diagnostics import ProvisioningError
from lifecycled.utils.logs import FieldLogger

RECEIVE_RETRY_SECONDS = 1.0
SHORT_POLL_PAUSE_SECONDS = 0.2


class AutoscalingListener:
    """Listens for autoscaling termination lifecycle actions on a relay queue."""

    kind = "autoscaling"

    def __init__(self, instance_id: str, relay: RelayQueue, logger: FieldLogger) -> None:
        self.instance_id = instance_id
        self.relay = relay
        self.log = logger.bind(listener=self.kind)

    def start(self, ctx: RunContext, notices: "queue.Queue[Notice]") -> None:
        self.relay.create()

        try:
            self.relay.subscribe()
        except ProvisioningError:
            try:
                self.relay.delete()
            except (BotoCoreError, ClientError) as exc:
                self.log.bind(error=str(exc)).error("Failed to delete queue")
            raise

        while not ctx.cancelled():
            try:
                messages = self.relay.receive(ctx)
            except (BotoCoreError, ClientError) as exc:
                self.log.bind(error=str(exc)).warning("Failed to get messages from SQS")
                ctx.wait(RECEIVE_RETRY_SECONDS)
                continue

            if not messages and self.relay.wait_seconds == 0:
                # short polls return immediately
                ctx.wait(SHORT_POLL_PAUSE_SECONDS)
                continue

            for message in messages:
                notice = self._process(message)
                if notice is not None:
                    notices.put_nowait(notice)
                    return

    def teardown(self) -> None:
        self.relay.teardown()

    def _process(self, message: Dict[str, Any]) -> Notice | None:
        try:
            self.relay.delete_message(message["ReceiptHandle"])
        except (BotoCoreError, ClientError) as exc:
            self.log.bind(error=str(exc)).warning("Failed to delete message")

        try:
            envelope = Envelope.model_validate_json(message.get("Body") or "")
        except ValidationError as exc:
            self.log.bind(error=str(exc)).error("Failed to unmarshal envelope")
            return None

        self.log.bind(type=envelope.type, subject=envelope.subject).debug("Received an SQS message")

        try:
            lifecycle = LifecycleMessage.model_validate_json(envelope.message)
        except ValidationError as exc:
            self.log.bind(error=str(exc)).error("Failed to unmarshal autoscaling message")
            return None

        if lifecycle.instance_id != self.instance_id:
            self.log.bind(target=lifecycle.instance_id).debug(
                "Skipping autoscaling event, doesn't match instance id"
            )
            return None

        if lifecycle.transition != AUTOSCALING_TERMINATING:
            self.log.bind(transition=lifecycle.transition).debug(
                "Skipping autoscaling event, not a termination notice"
            )
            return None

        return lifecycle.to_notice()

from __future__ import annotations

import threading
from types import TracebackType
from typing import Any, Dict, Optional, Type

from botocore.exceptions import BotoCoreError, ClientError

from lifecycled.core.models import AutoscalingTermination
from lifecycled.utils.logs import FieldLogger

LIFECYCLE_ACTION_RESULT = "CONTINUE"


class LifecycleActionKeeper:
    """Keeps an autoscaling lifecycle action alive while the handler runs.

    Entering starts a heartbeat thread; exiting stops it and completes the
    action with CONTINUE, whatever the handler's outcome. Heartbeat and
    completion failures are logged only.
    """

    def __init__(
        self,
        autoscaling: Any,
        notice: AutoscalingTermination,
        logger: FieldLogger,
        interval: float = 10.0,
    ) -> None:
        self.autoscaling = autoscaling
        self.notice = notice
        self.interval = interval
        self.log = logger
        self.heartbeats_sent = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "LifecycleActionKeeper":
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._heartbeat_loop, name="lifecycle-heartbeat", daemon=True)
        self._thread.start()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.complete()

    def record_heartbeat(self) -> None:
        self.log.debug("Sending heartbeat")
        try:
            self.autoscaling.record_lifecycle_action_heartbeat(**self._action_identifiers())
        except (BotoCoreError, ClientError) as exc:
            self.log.bind(error=str(exc)).warning("Failed to send heartbeat")
            return
        self.heartbeats_sent += 1

    def complete(self) -> bool:
        try:
            self.autoscaling.complete_lifecycle_action(
                LifecycleActionResult=LIFECYCLE_ACTION_RESULT,
                **self._action_identifiers(),
            )
        except (BotoCoreError, ClientError) as exc:
            self.log.bind(error=str(exc)).error("Failed to complete lifecycle action")
            return False

        self.log.info("Lifecycle action completed successfully")
        return True

    def _heartbeat_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.record_heartbeat()
            except Exception as exc:
                self.log.bind(error=repr(exc)).exception("Unexpected error while sending heartbeat")

    def _action_identifiers(self) -> Dict[str, str]:
        return {
            "AutoScalingGroupName": self.notice.group_name,
            "LifecycleHookName": self.notice.hook_name,
            "InstanceId": self.notice.instance_id,
            "LifecycleActionToken": self.notice.action_token,
        }

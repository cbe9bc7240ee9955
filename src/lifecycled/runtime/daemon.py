from __future__ import annotations

import queue
import threading
import time
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from typing import Any, List, Optional

from lifecycled.core.context import RunContext
from lifecycled.core.models import AutoscalingTermination, DaemonSettings, Notice
from lifecycled.infrastructure.aws import AwsClients
from lifecycled.infrastructure.metadata import InstanceMetadata
from lifecycled.infrastructure.queue import RelayQueue, queue_name_for
from lifecycled.runtime.autoscaling import AutoscalingListener
from lifecycled.runtime.contracts import DaemonEvent, DaemonState, Handler, Listener, transition_daemon_state
from lifecycled.runtime.lifecycle import LifecycleActionKeeper
from lifecycled.runtime.spot import SpotListener
from lifecycled.utils.diagnostics import HandlerError, NoNoticeError
from lifecycled.utils.logs import FieldLogger

POLL_INTERVAL_SECONDS = 0.1


@dataclass(frozen=True)
class HandlerOutcome:
    """Result of running the handler for the winning notice."""

    notice: Notice
    duration: float
    error: Optional[HandlerError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class Daemon:
    """Races the configured listeners and runs the handler for the first notice."""

    def __init__(
        self,
        instance_id: str,
        handler: Handler,
        logger: FieldLogger,
        autoscaling: Any = None,
        heartbeat_interval: float = 10.0,
        listeners: Optional[List[Listener]] = None,
    ) -> None:
        self.instance_id = instance_id
        self.handler = handler
        self.autoscaling = autoscaling
        self.heartbeat_interval = heartbeat_interval
        self.listeners: List[Listener] = list(listeners or [])
        self.log = logger.bind(instanceId=instance_id)
        self.state = DaemonState.IDLE

    @classmethod
    def from_settings(
        cls,
        settings: DaemonSettings,
        instance_id: str,
        clients: AwsClients,
        metadata: InstanceMetadata,
        handler: Handler,
        logger: FieldLogger,
    ) -> "Daemon":
        daemon = cls(
            instance_id=instance_id,
            handler=handler,
            logger=logger,
            autoscaling=clients.autoscaling,
            heartbeat_interval=settings.autoscaling_heartbeat_interval,
        )
        listener_log = logger.bind(instanceId=instance_id)

        if settings.spot_listener:
            daemon.add_listener(
                SpotListener(instance_id, metadata, listener_log, interval=settings.spot_listener_interval)
            )

        if settings.sns_topic:
            relay = RelayQueue(
                name=queue_name_for(instance_id),
                topic_arn=settings.sns_topic,
                sqs=clients.sqs,
                sns=clients.sns,
                logger=listener_log,
                tags=settings.tags,
                wait_seconds=settings.queue_wait_seconds,
            )
            daemon.add_listener(AutoscalingListener(instance_id, relay, listener_log))

        return daemon

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def start(self, ctx: RunContext) -> Optional[Notice]:
        """Run every listener until one produces a notice.

        Returns the first notice, or None when ``ctx`` was cancelled first.
        Raises NoNoticeError when every listener exited without a notice and
        ``ctx`` was not cancelled. All listener threads have exited, and each
        listener has been torn down, by the time this returns.
        """
        self._transition(DaemonEvent.START)

        # One slot per listener so a losing listener's put never blocks.
        notices: "queue.Queue[Notice]" = queue.Queue(maxsize=max(len(self.listeners), 1))
        listener_ctx = ctx.child()
        threads: List[threading.Thread] = []

        for listener in self.listeners:
            log = self.log.bind(listener=listener.kind)
            thread = threading.Thread(
                target=self._run_listener,
                args=(listener, listener_ctx, notices, log),
                name=f"listener-{listener.kind}",
                daemon=True,
            )
            log.info("Starting listener")
            thread.start()
            threads.append(thread)

        self.log.info("Waiting for termination notices")

        try:
            notice = self._wait_for_notice(ctx, listener_ctx, notices, threads)
        finally:
            listener_ctx.cancel()
            for thread in threads:
                thread.join()

        if notice is not None:
            self._transition(DaemonEvent.NOTICE)
            self.log.bind(notice=notice.kind).info("Received termination notice")
            return notice

        if ctx.cancelled():
            self._transition(DaemonEvent.CANCEL)
            self._transition(DaemonEvent.FINISH)
            self.log.info("Stopped listening, shutdown requested")
            return None

        self._transition(DaemonEvent.LISTENERS_EXITED)
        self._transition(DaemonEvent.FINISH)
        raise NoNoticeError("all listeners exited without a termination notice")

    def handle(self, ctx: RunContext, notice: Notice) -> HandlerOutcome:
        """Run the handler once for ``notice``, keeping the lifecycle action alive meanwhile."""
        log = self.log.bind(notice=notice.kind)
        self._transition(DaemonEvent.HANDLER_START)
        log.info("Executing handler")

        error: Optional[HandlerError] = None
        started = time.monotonic()
        with self._completion_stage(notice, log):
            try:
                self.handler.execute(ctx, notice.instance_id, notice.transition)
            except HandlerError as exc:
                error = exc
            duration = time.monotonic() - started
            self._transition(DaemonEvent.HANDLER_END)

        self._transition(DaemonEvent.FINISH)

        log = log.bind(duration=f"{duration:.3f}s")
        if error is not None:
            log.bind(error=str(error)).error("Failed to execute handler")
        else:
            log.info("Handler finished successfully")
        return HandlerOutcome(notice=notice, duration=duration, error=error)

    def run(self, ctx: RunContext) -> Optional[HandlerOutcome]:
        """Wait for a notice and handle it; None on graceful shutdown."""
        notice = self.start(ctx)
        if notice is None:
            return None
        return self.handle(ctx, notice)

    def _wait_for_notice(
        self,
        ctx: RunContext,
        listener_ctx: RunContext,
        notices: "queue.Queue[Notice]",
        threads: List[threading.Thread],
    ) -> Optional[Notice]:
        while True:
            try:
                return notices.get(timeout=POLL_INTERVAL_SECONDS)
            except queue.Empty:
                pass

            if listener_ctx.cancelled() or not any(thread.is_alive() for thread in threads):
                # A notice may have landed between the timeout and the check.
                try:
                    return notices.get_nowait()
                except queue.Empty:
                    return None

    def _run_listener(
        self,
        listener: Listener,
        listener_ctx: RunContext,
        notices: "queue.Queue[Notice]",
        log: FieldLogger,
    ) -> None:
        try:
            listener.start(listener_ctx, notices)
        except Exception as exc:
            log.bind(error=str(exc)).error("Failed to start listener")
            listener_ctx.cancel()
        else:
            log.info("Stopped listener")
        finally:
            listener.teardown()

    def _completion_stage(self, notice: Notice, log: FieldLogger) -> AbstractContextManager:
        if isinstance(notice, AutoscalingTermination) and self.autoscaling is not None:
            return LifecycleActionKeeper(
                self.autoscaling,
                notice,
                log,
                interval=self.heartbeat_interval,
            )
        return nullcontext()

    def _transition(self, event: DaemonEvent) -> None:
        self.state = transition_daemon_state(self.state, event)

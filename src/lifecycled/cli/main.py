import os
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from lifecycled import __version__
from lifecycled.cli.formatter import OutputFormatter, attach_handler, configure_logging
from lifecycled.config.loader import DEFAULT_CONFIG_NAME, ConfigFileError, load_config
from lifecycled.core.context import RunContext
from lifecycled.core.models import DaemonSettings
from lifecycled.infrastructure.aws import AwsClients, create_clients, resolve_region
from lifecycled.infrastructure.cloudwatch import CloudWatchLogsHandler
from lifecycled.infrastructure.metadata import InstanceMetadata
from lifecycled.runtime.daemon import Daemon
from lifecycled.runtime.handler import FileHandler
from lifecycled.tools.queue_cleaner import QueueCleaner
from lifecycled.utils.diagnostics import LifecycledError, MetadataError
from lifecycled.utils.logs import FieldLogger

app = typer.Typer(
    name="lifecycled",
    help="Handle AWS autoscaling lifecycle events and spot terminations gracefully",
    rich_markup_mode=None,
)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_settings(config_path: Optional[Path], overrides: Dict[str, Any]) -> DaemonSettings:
    """Merge config file values with flag overrides (flags win)."""
    if config_path is not None and not config_path.exists():
        raise ConfigFileError(f"Config file {config_path} does not exist")

    values = load_config(config_path or Path(DEFAULT_CONFIG_NAME))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return DaemonSettings(**values)


def build_daemon(
    settings: DaemonSettings,
    instance_id: str,
    clients: AwsClients,
    metadata: InstanceMetadata,
    log: FieldLogger,
) -> Daemon:
    handler = FileHandler(settings.handler, settings.handler_args)
    return Daemon.from_settings(settings, instance_id, clients, metadata, handler, log)


def install_signal_handlers(ctx: RunContext, log: FieldLogger) -> Dict[int, Any]:
    """Cancel ``ctx`` on SIGINT/SIGTERM; returns the previous handlers."""

    def _cancel(signum: int, frame: Any) -> None:
        log.bind(signal=signal.Signals(signum).name).info("Received signal: shutting down...")
        ctx.cancel()

    return {sig: signal.signal(sig, _cancel) for sig in SHUTDOWN_SIGNALS}


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def _fail(message: str, log: Optional[FieldLogger] = None) -> typer.Exit:
    if log is not None:
        log.error(message)
    else:
        OutputFormatter.log(message, severity="error")
    return typer.Exit(code=1)


@app.command("run")
def run(
    handler: Optional[Path] = typer.Option(
        None, "--handler", help="The script to invoke to handle events", exists=True, dir_okay=False
    ),
    instance_id: Optional[str] = typer.Option(
        None, "--instance-id", help="The instance id to listen for events for (default: from metadata)"
    ),
    sns_topic: Optional[str] = typer.Option(None, "--sns-topic", help="The SNS topic that receives events"),
    no_spot: bool = typer.Option(False, "--no-spot", help="Disable the spot termination listener"),
    handler_args: Optional[List[str]] = typer.Option(
        None, "--handler-args", help="Additional arguments passed to the handler after instance id and transition"
    ),
    tags: Optional[str] = typer.Option(None, "--tags", help="Tags for the SQS queue: key1=value1,key2=value2"),
    json_logging: bool = typer.Option(False, "--json", help="Enable JSON logging"),
    debug: bool = typer.Option(False, "--debug", help="Show debugging info"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Write a copy of the logs to the specified path"),
    cloudwatch_group: Optional[str] = typer.Option(
        None, "--cloudwatch-group", help="Write logs to a specific Cloudwatch Logs group"
    ),
    cloudwatch_stream: Optional[str] = typer.Option(
        None, "--cloudwatch-stream", help="Write logs to a specific Cloudwatch Logs stream, defaults to instance-id"
    ),
    spot_listener_interval: Optional[float] = typer.Option(
        None, "--spot-listener-interval", help="Seconds between spot termination checks (default 5)"
    ),
    autoscaling_heartbeat_interval: Optional[float] = typer.Option(
        None, "--autoscaling-heartbeat-interval", help="Seconds between lifecycle heartbeats (default 10)"
    ),
    queue_wait_seconds: Optional[int] = typer.Option(
        None, "--queue-wait-seconds", help="Long-poll wait for the relay queue, 1-20 (default 20)"
    ),
    exit_on_handler_error: bool = typer.Option(
        False, "--exit-on-handler-error", help="Exit with status 1 when the handler fails"
    ),
    config: Optional[Path] = typer.Option(None, "--config", help=f"Path to config file (default ./{DEFAULT_CONFIG_NAME})"),
):
    """
    Wait for a termination notice and run the handler once.
    """
    overrides: Dict[str, Any] = {
        "handler": handler,
        "instance_id": instance_id,
        "sns_topic": sns_topic,
        "handler_args": handler_args or None,
        "tags": tags,
        "log_file": log_file,
        "cloudwatch_group": cloudwatch_group,
        "cloudwatch_stream": cloudwatch_stream,
        "spot_listener_interval": spot_listener_interval,
        "autoscaling_heartbeat_interval": autoscaling_heartbeat_interval,
        "queue_wait_seconds": queue_wait_seconds,
        "spot_listener": False if no_spot else None,
        "json_logging": True if json_logging else None,
        "debug": True if debug else None,
        "exit_on_handler_error": True if exit_on_handler_error else None,
    }

    try:
        settings = build_settings(config, overrides)
    except (ConfigFileError, ValidationError) as exc:
        raise _fail(f"Invalid configuration: {exc}")

    if settings.handler is None:
        raise _fail("Missing handler: pass --handler or set LIFECYCLED_HANDLER.")
    if not settings.handler.is_file():
        raise _fail(f"Handler {settings.handler} does not exist or is not a file.")
    if not os.access(settings.handler, os.X_OK):
        raise _fail(f"Handler {settings.handler} is not executable.")
    if not settings.spot_listener and not settings.sns_topic:
        raise _fail("Nothing to listen for: spot listener is disabled and no --sns-topic was given.")

    log = configure_logging(
        json_output=settings.json_logging,
        debug=settings.debug,
        log_file=settings.log_file,
        plain=bool(settings.cloudwatch_group) and not settings.json_logging,
    )

    metadata = InstanceMetadata()
    try:
        log.info("Resolving region")
        region = resolve_region(metadata)
        clients = create_clients(region)

        resolved_instance_id = settings.instance_id
        if not resolved_instance_id:
            log.info("Looking up instance id from metadata service")
            resolved_instance_id = metadata.instance_id()
    except MetadataError as exc:
        raise _fail(f"Failed to query instance metadata: {exc}", log)

    if settings.cloudwatch_group:
        stream = settings.cloudwatch_stream or resolved_instance_id
        try:
            shipping = CloudWatchLogsHandler(clients.session.client("logs"), settings.cloudwatch_group, stream)
        except (BotoCoreError, ClientError) as exc:
            raise _fail(f"Failed to set up CloudWatch logging: {exc}", log)
        attach_handler(log, shipping, json_output=settings.json_logging)
        log.bind(group=settings.cloudwatch_group, stream=stream).info("Writing logs to CloudWatch")

    daemon = build_daemon(settings, resolved_instance_id, clients, metadata, log)

    ctx = RunContext()
    previous_handlers = install_signal_handlers(ctx, log)
    try:
        outcome = daemon.run(ctx)
    except LifecycledError as exc:
        raise _fail(f"Daemon failed: {exc}", log)
    finally:
        ctx.cancel()
        restore_signal_handlers(previous_handlers)

    if outcome is not None and not outcome.succeeded and settings.exit_on_handler_error:
        raise typer.Exit(code=1)


@app.command("clean-queues")
def clean_queues(
    parallel: int = typer.Option(20, "--parallel", min=1, help="The number of parallel deletes to run"),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region (default: AWS_REGION or metadata)"),
    debug: bool = typer.Option(False, "--debug", help="Show debugging info"),
):
    """
    Delete relay queues and subscriptions left behind by terminated instances.
    """
    log = configure_logging(debug=debug)

    try:
        clients = create_clients(resolve_region(InstanceMetadata(), region))
    except MetadataError as exc:
        raise _fail(f"Failed to resolve region: {exc}", log)

    cleaner = QueueCleaner(clients.sqs, clients.sns, clients.ec2, log, parallel=parallel)
    try:
        totals = cleaner.run()
    except (BotoCoreError, ClientError) as exc:
        raise _fail(f"Cleanup failed: {exc}", log)

    OutputFormatter.log(
        f"Done! Deleted {totals['subscriptions']} subscriptions and {totals['queues']} queues.",
        severity="success",
    )


@app.command("version")
def version():
    """Print the lifecycled version."""
    typer.echo(__version__)


if __name__ == "__main__":
    app()

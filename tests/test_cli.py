from datetime import datetime, timezone

import pytest
from typer.testing import CliRunner

from fakes import FakeEC2, FakeSNS, FakeSQS
from lifecycled import __version__
from lifecycled.cli import main
from lifecycled.cli.main import app
from lifecycled.core.models import SpotTermination
from lifecycled.infrastructure.aws import AwsClients
from lifecycled.runtime.daemon import HandlerOutcome
from lifecycled.utils.diagnostics import HandlerError, MetadataError, NoNoticeError

runner = CliRunner()

NOTICE = SpotTermination(
    instance_id="i-00000000000",
    termination_time=datetime(2015, 1, 5, 18, 2, tzinfo=timezone.utc),
)


class StubMetadata:
    def __init__(self, *args, **kwargs):
        self.lookups = 0

    def instance_id(self):
        self.lookups += 1
        return "i-from-metadata"

    def region(self):
        return "us-east-1"


class StubDaemon:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error
        self.ctx = None

    def run(self, ctx):
        self.ctx = ctx
        if self.error is not None:
            raise self.error
        return self.outcome


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Isolated cwd with an executable handler and no LIFECYCLED_* leakage."""
    monkeypatch.chdir(tmp_path)
    for name in ("LIFECYCLED_HANDLER", "LIFECYCLED_SNS_TOPIC", "LIFECYCLED_TAGS", "LIFECYCLED_INSTANCE_ID"):
        monkeypatch.delenv(name, raising=False)

    handler = tmp_path / "handler.sh"
    handler.write_text("#!/bin/sh\nexit 0\n")
    handler.chmod(0o755)
    return tmp_path


@pytest.fixture
def wired(monkeypatch):
    """Replace AWS and the daemon with stubs; records what the CLI built."""
    built = {"daemon": StubDaemon(outcome=HandlerOutcome(notice=NOTICE, duration=0.1))}
    clients = AwsClients(sqs=FakeSQS(), sns=FakeSNS(), autoscaling=None, ec2=FakeEC2(), session=None)

    def build_daemon(settings, instance_id, clients, metadata, log):
        built["settings"] = settings
        built["instance_id"] = instance_id
        return built["daemon"]

    monkeypatch.setattr(main, "InstanceMetadata", StubMetadata)
    monkeypatch.setattr(main, "resolve_region", lambda metadata, region=None: region or "us-east-1")
    monkeypatch.setattr(main, "create_clients", lambda region: clients)
    monkeypatch.setattr(main, "build_daemon", build_daemon)
    return built


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == __version__


def test_run_help():
    result = runner.invoke(app, ["run", "--help"])
    assert result.exit_code == 0
    assert "--handler" in result.stdout


def test_run_requires_handler(workspace, wired):
    result = runner.invoke(app, ["run", "--instance-id", "i-123"])
    assert result.exit_code == 1
    assert "Missing handler" in result.output
    assert "settings" not in wired


def test_run_rejects_invalid_tags(workspace, wired):
    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--tags", "aws:owner=me"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert "settings" not in wired


def test_run_requires_something_to_listen_for(workspace, wired):
    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--no-spot"])
    assert result.exit_code == 1
    assert "Nothing to listen for" in result.output


def test_run_succeeds_and_passes_settings(workspace, wired):
    result = runner.invoke(
        app,
        [
            "run",
            "--handler",
            "handler.sh",
            "--instance-id",
            "i-123",
            "--sns-topic",
            "topic-arn",
            "--handler-args",
            "grace",
            "--handler-args",
            "30",
            "--tags",
            "team=infra",
            "--queue-wait-seconds",
            "5",
        ],
    )
    assert result.exit_code == 0, result.output

    settings = wired["settings"]
    assert wired["instance_id"] == "i-123"
    assert settings.sns_topic == "topic-arn"
    assert settings.handler_args == ["grace", "30"]
    assert settings.tags == "team=infra"
    assert settings.queue_wait_seconds == 5
    assert settings.spot_listener is True
    assert wired["daemon"].ctx.cancelled()


def test_run_looks_up_instance_id_from_metadata(workspace, wired):
    result = runner.invoke(app, ["run", "--handler", "handler.sh"])
    assert result.exit_code == 0, result.output
    assert wired["instance_id"] == "i-from-metadata"


def test_run_fails_when_metadata_is_unreachable(workspace, wired, monkeypatch):
    def unreachable(metadata, region=None):
        raise MetadataError("connection refused")

    monkeypatch.setattr(main, "resolve_region", unreachable)

    result = runner.invoke(app, ["run", "--handler", "handler.sh"])
    assert result.exit_code == 1
    assert "settings" not in wired


def test_run_reads_config_file_and_flags_win(workspace, wired):
    (workspace / "lifecycled.yaml").write_text(
        """
lifecycled:
  sns_topic: config-topic
  instance-id: i-config
  spot-listener: false
"""
    )

    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--sns-topic", "flag-topic"])
    assert result.exit_code == 0, result.output
    assert wired["settings"].sns_topic == "flag-topic"
    assert wired["settings"].spot_listener is False
    assert wired["instance_id"] == "i-config"


def test_run_missing_explicit_config_file(workspace, wired):
    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--config", "missing.yaml"])
    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_handler_failure_exits_zero_by_default(workspace, wired):
    failed = HandlerOutcome(notice=NOTICE, duration=0.1, error=HandlerError("exited unsuccessfully", returncode=2))
    wired["daemon"] = StubDaemon(outcome=failed)

    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--instance-id", "i-123"])
    assert result.exit_code == 0, result.output


def test_handler_failure_exits_one_when_requested(workspace, wired):
    failed = HandlerOutcome(notice=NOTICE, duration=0.1, error=HandlerError("exited unsuccessfully", returncode=2))
    wired["daemon"] = StubDaemon(outcome=failed)

    result = runner.invoke(
        app, ["run", "--handler", "handler.sh", "--instance-id", "i-123", "--exit-on-handler-error"]
    )
    assert result.exit_code == 1


def test_graceful_shutdown_exits_zero(workspace, wired):
    wired["daemon"] = StubDaemon(outcome=None)

    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--instance-id", "i-123"])
    assert result.exit_code == 0, result.output


def test_listener_failure_exits_one(workspace, wired):
    wired["daemon"] = StubDaemon(error=NoNoticeError("all listeners exited without a termination notice"))

    result = runner.invoke(app, ["run", "--handler", "handler.sh", "--instance-id", "i-123"])
    assert result.exit_code == 1


def test_clean_queues(workspace, wired):
    result = runner.invoke(app, ["clean-queues", "--region", "eu-west-1", "--parallel", "2"])
    assert result.exit_code == 0, result.output
    assert "Deleted 0 subscriptions and 0 queues" in result.output


def test_run_rejects_missing_handler_from_environment(workspace, wired, monkeypatch):
    monkeypatch.setenv("LIFECYCLED_HANDLER", str(workspace / "missing" / "handler.sh"))

    result = runner.invoke(app, ["run", "--instance-id", "i-123"])
    assert result.exit_code == 1
    assert "does not exist" in result.output
    assert "settings" not in wired


def test_run_rejects_non_executable_handler_from_config(workspace, wired):
    script = workspace / "drain.sh"
    script.write_text("#!/bin/sh\nexit 0\n")
    script.chmod(0o644)
    (workspace / "lifecycled.yaml").write_text("lifecycled:\n  handler: drain.sh\n")

    result = runner.invoke(app, ["run", "--instance-id", "i-123"])
    assert result.exit_code == 1
    assert "is not executable" in result.output
    assert "settings" not in wired

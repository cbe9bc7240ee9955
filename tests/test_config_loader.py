import pytest
from pathlib import Path

from lifecycled.config.loader import ConfigFileError, interpolate_env_vars, load_config


def test_load_config_no_file(tmp_path):
    # A missing file means "use flags, environment and defaults"
    config = load_config(tmp_path / "nonexistent.yaml")
    assert config == {}


def test_load_config_basic(tmp_path):
    config_file = tmp_path / "lifecycled.yaml"
    content = """
lifecycled:
  sns_topic: "arn:aws:sns:us-east-1:123456789012:lifecycle"
  handler: /usr/local/bin/drain
  handler-args:
    - --grace
    - "30"
  spot-listener: false
"""
    config_file.write_text(content)

    config = load_config(config_file)
    assert config["sns_topic"] == "arn:aws:sns:us-east-1:123456789012:lifecycle"
    assert config["handler"] == "/usr/local/bin/drain"
    assert config["handler_args"] == ["--grace", "30"]
    assert config["spot_listener"] is False


def test_load_config_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("LIFECYCLE_TOPIC", "topic-arn")
    monkeypatch.delenv("MISSING_VAR", raising=False)

    config_file = tmp_path / "lifecycled.yaml"
    content = """
lifecycled:
  sns_topic: "${LIFECYCLE_TOPIC}"
  cloudwatch_group: "${LOG_GROUP:/lifecycled}"
  tags: "${MISSING_VAR}"
"""
    config_file.write_text(content)

    config = load_config(config_file)
    assert config["sns_topic"] == "topic-arn"
    assert config["cloudwatch_group"] == "/lifecycled"
    assert config["tags"] == ""


def test_load_config_ignores_other_sections(tmp_path):
    config_file = tmp_path / "lifecycled.yaml"
    content = """
unknown_key: true
other:
  debug: true
lifecycled:
  debug: false
"""
    config_file.write_text(content)

    config = load_config(config_file)
    assert config == {"debug": False}


def test_load_config_empty_file(tmp_path):
    config_file = tmp_path / "lifecycled.yaml"
    config_file.write_text("")

    assert load_config(config_file) == {}


@pytest.mark.parametrize(
    "content",
    [
        "lifecycled: [unclosed",
        "- just\n- a\n- list\n",
        "lifecycled:\n  - not\n  - a mapping\n",
    ],
)
def test_load_config_rejects_malformed_files(tmp_path, content):
    config_file = tmp_path / "lifecycled.yaml"
    config_file.write_text(content)

    with pytest.raises(ConfigFileError):
        load_config(config_file)


def test_interpolate_env_vars_leaves_plain_text_alone():
    assert interpolate_env_vars("handler: /bin/true") == "handler: /bin/true"


def test_example_config_builds_settings(monkeypatch):
    from lifecycled.core.models import DaemonSettings

    monkeypatch.delenv("LIFECYCLED_TOPIC", raising=False)
    example = Path(__file__).parent.parent / "examples" / "lifecycled.yaml"

    settings = DaemonSettings(**load_config(example))
    assert settings.sns_topic == "arn:aws:sns:us-east-1:123456789012:lifecycle-hooks"
    assert settings.handler_args == ["--grace", "30"]
    assert settings.tags == "team=platform,service=workers"
    assert settings.queue_wait_seconds == 20

import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

DEFAULT_CONFIG_NAME = "lifecycled.yaml"


class ConfigFileError(ValueError):
    """Raised when a config file exists but cannot be parsed."""


def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)

def load_config(path: Path) -> Dict[str, Any]:
    """
    Load the 'lifecycled' section of a YAML config file with environment
    variable interpolation.

    A missing file yields an empty dict. A file that is not valid YAML, or
    whose 'lifecycled' section is not a mapping, raises ConfigFileError.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text()
        full_config = yaml.safe_load(interpolate_env_vars(content)) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigFileError(f"Invalid config file {path}: {exc}") from exc

    if not isinstance(full_config, dict):
        raise ConfigFileError(f"Invalid config file {path}: expected a mapping at the top level")

    section = full_config.get("lifecycled") or {}
    if not isinstance(section, dict):
        raise ConfigFileError(f"Invalid config file {path}: 'lifecycled' must be a mapping")

    return {k.replace("-", "_"): v for k, v in section.items()}

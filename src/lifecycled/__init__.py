from lifecycled.core.context import RunContext
from lifecycled.core.models import AutoscalingTermination, DaemonSettings, Notice, SpotTermination
from lifecycled.core.tags import parse_tags
from lifecycled.runtime import (
    AutoscalingListener,
    Daemon,
    FileHandler,
    HandlerOutcome,
    SpotListener,
)

__version__ = "0.1.0"

__all__ = [
    "AutoscalingListener",
    "AutoscalingTermination",
    "Daemon",
    "DaemonSettings",
    "FileHandler",
    "HandlerOutcome",
    "Notice",
    "RunContext",
    "SpotListener",
    "SpotTermination",
    "parse_tags",
    "__version__",
]

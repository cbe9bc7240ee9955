import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from lifecycled.utils.logs import FieldLogger, JsonFormatter, TextFormatter

# Create a stderr console for logging
error_console = Console(stderr=True)

LOGGER_NAME = "lifecycled"


class OutputFormatter:
    """
    Human-facing CLI messages on stderr, separate from the daemon's structured log.
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print system messages to stderr with color coding.
        """
        style = "white"
        prefix = "[LIFECYCLED]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        error_console.print(f"[{style}]{prefix} {escape(message)}[/{style}]", highlight=False)


def configure_logging(
    json_output: bool = False,
    debug: bool = False,
    log_file: Optional[Path] = None,
    plain: bool = False,
    name: str = LOGGER_NAME,
) -> FieldLogger:
    """
    Build the daemon's logger handle.

    Text output goes through rich on stderr; ``plain`` drops colours and
    timestamps (used when logs are also shipped elsewhere). ``log_file``
    appends a copy of every record.
    """
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    if json_output:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    elif plain:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(TextFormatter(include_level=True))
    else:
        handler = RichHandler(
            console=error_console,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(TextFormatter())
    logger.addHandler(handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JsonFormatter() if json_output else TextFormatter(include_level=True, include_time=True))
        logger.addHandler(file_handler)

    return FieldLogger(logger)


def attach_handler(log: FieldLogger, handler: logging.Handler, json_output: bool = False) -> None:
    """Add an extra destination (e.g. CloudWatch Logs) to an existing handle."""
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter(include_level=True))
    log.logger.addHandler(handler)

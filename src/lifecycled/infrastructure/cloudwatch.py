from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError


def _ignore_already_exists(call: Any, **kwargs: Any) -> None:
    try:
        call(**kwargs)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
            raise


class CloudWatchLogsHandler(logging.Handler):
    """Ships each log record to a CloudWatch Logs stream.

    The group and stream are created when missing. Records are sent one at a
    time; delivery failures go through ``handleError`` and never reach the
    caller.
    """

    def __init__(self, client: Any, group: str, stream: str, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.client = client
        self.group = group
        self.stream = stream

        _ignore_already_exists(client.create_log_group, logGroupName=group)
        _ignore_already_exists(client.create_log_stream, logGroupName=group, logStreamName=stream)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            self.client.put_log_events(
                logGroupName=self.group,
                logStreamName=self.stream,
                logEvents=[{"timestamp": int(record.created * 1000), "message": message}],
            )
        except (BotoCoreError, ClientError):
            self.handleError(record)

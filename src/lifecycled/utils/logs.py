from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple


class FieldLogger(logging.LoggerAdapter):
    """Logger handle carrying structured key/value fields.

    Every record emitted through the handle gets a ``fields`` attribute holding
    the bound fields, which the formatters below render. ``bind`` never mutates
    the current handle.
    """

    def __init__(self, logger: logging.Logger, fields: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(logger, dict(fields or {}))

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self.extra)

    def bind(self, **fields: Any) -> "FieldLogger":
        merged = dict(self.extra)
        merged.update(fields)
        return FieldLogger(self.logger, merged)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        fields = dict(self.extra)
        fields.update(extra.pop("fields", {}))
        extra["fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the structured fields attached to a record, if any."""
    fields = getattr(record, "fields", None)
    if not isinstance(fields, dict):
        return {}
    return fields


def _render_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text or '"' in text:
        return json.dumps(text, ensure_ascii=False)
    return text


class TextFormatter(logging.Formatter):
    """Renders ``message key=value ...`` with fields in sorted order."""

    def __init__(self, include_level: bool = False, include_time: bool = False) -> None:
        super().__init__()
        self.include_level = include_level
        self.include_time = include_time

    def format(self, record: logging.LogRecord) -> str:
        parts = []
        if self.include_time:
            stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
            parts.append(f"time={stamp.isoformat()}")
        if self.include_level:
            parts.append(f"level={record.levelname.lower()}")
        if self.include_time or self.include_level:
            parts.append(f"msg={_render_value(record.getMessage())}")
        else:
            parts.append(record.getMessage())

        for key in sorted(record_fields(record)):
            parts.append(f"{key}={_render_value(record_fields(record)[key])}")

        if record.exc_info:
            parts.append(f"error={_render_value(self.formatException(record.exc_info))}")
        return " ".join(parts)


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
        }
        for key, value in record_fields(record).items():
            payload[key] = value if isinstance(value, (int, float, bool)) or value is None else str(value)
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

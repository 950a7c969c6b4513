"""Logging bootstrap for session event records.

Modules log an event name as the message and attach context through
``extra={"event": ..., ...}``. The formatters here render that pair as the
record: JSON lines with the context under ``data``, or ``event key=value``
text for humans.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from typing import Any

APP_LOGGER_PREFIX = "localai_chat"
NOISY_LIBRARY_LOGGERS = ("httpx", "httpcore", "ollama", "asyncio")

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "event"}


def event_fields(record: logging.LogRecord) -> tuple[str, dict[str, Any]]:
    """Return ``(event, context)`` for a record.

    Records logged without ``extra`` (third-party libraries, warnings) use
    their formatted message as the event name and carry no context.
    """
    event = getattr(record, "event", None) or record.getMessage()
    context = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }
    return str(event), context


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per event record."""

    def format(self, record: logging.LogRecord) -> str:
        event, context = event_fields(record)
        data: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": event,
            "area": event.split(".", 1)[0],
        }
        message = record.getMessage()
        if message != event:
            data["message"] = message
        if context:
            data["data"] = context
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)


class EventTextFormatter(logging.Formatter):
    """Render ``<time> <LEVEL> <logger> <event> key=value ...`` lines."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")

    def formatMessage(self, record: logging.LogRecord) -> str:
        event, context = event_fields(record)
        pairs = " ".join(f"{key}={value!r}" for key, value in context.items())
        record.message = f"{event} {pairs}" if pairs else event
        return super().formatMessage(record)


def _is_app_record(record: logging.LogRecord) -> bool:
    return record.name.startswith(APP_LOGGER_PREFIX)


def _file_filter(record: logging.LogRecord) -> bool:
    """Keep every app event; keep library records only from WARNING up."""
    return _is_app_record(record) or record.levelno >= logging.WARNING


def _best_effort_private_permissions(path: Path) -> None:
    if os.name != "posix":
        return
    try:
        path.chmod(0o600)
    except OSError:
        logging.getLogger(__name__).warning(
            "logging.file.permissions",
            extra={"event": "logging.file.permissions", "path": str(path)},
        )


def configure_logging(logging_config: dict[str, Any]) -> None:
    """Configure root logging from the ``[logging]`` config section.

    The terminal UI owns the screen, so stderr only receives app events at
    WARNING and above; the optional log file receives the full event stream.
    """
    level_name = str(logging_config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    structured = bool(logging_config.get("structured", True))
    log_to_file = bool(logging_config.get("log_to_file", False))
    log_file_path = str(
        logging_config.get("log_file_path", "~/.local/state/localai-chat/app.log")
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    formatter: logging.Formatter = (
        JsonFormatter() if structured else EventTextFormatter()
    )

    for logger_name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(max(level, logging.WARNING))
    stderr_handler.addFilter(_is_app_record)
    root.addHandler(stderr_handler)

    if log_to_file:
        target = Path(log_file_path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        file_handler.addFilter(_file_filter)
        root.addHandler(file_handler)
        _best_effort_private_permissions(target)

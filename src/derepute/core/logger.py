"""
Event-style structured logging for Derepute services.

Every log call names an event (``chunk_confirmed``, ``snapshot_saved``)
and attaches its details as keyword fields. ``Logger`` hands those fields
to the stdlib ``logging`` machinery as the ``structured_kv`` extra, and
``StructuredFormatter`` (installed on the root handler by the CLI) renders
them after the event name:

    info synchronizer chunk_confirmed index=0 size=2 sequence=7

With ``json_output=True`` the whole event is serialized into the message
as a single JSON object instead, for log shippers that parse JSON lines.

Examples:
    ```python
    from derepute.core.logger import Logger

    logger = Logger("synchronizer")
    logger.info("sync_started", identity="sync-bot")

    chunk_log = logger.bind(index=3, size=50)
    chunk_log.warning("chunk_retry", attempt=1, delay_s=1.0)
    # warning synchronizer chunk_retry index=3 size=50 attempt=1 delay_s=1.0
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any


DEFAULT_MAX_VALUE_LENGTH = 1000
_NEEDS_QUOTING = frozenset(" =\"'")


def _truncate(value: Any, max_length: int | None) -> str:
    text = str(value)
    if max_length is None or len(text) <= max_length:
        return text
    return f"{text[:max_length]}...<truncated {len(text) - max_length} chars>"


def _render_value(text: str) -> str:
    if text and _NEEDS_QUOTING.isdisjoint(text):
        return text
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def format_kv_pairs(
    fields: dict[str, Any],
    max_value_length: int | None = DEFAULT_MAX_VALUE_LENGTH,
    prefix: str = " ",
) -> str:
    """Render *fields* as ``key=value`` tokens joined by spaces.

    Empty values and values containing whitespace, ``=`` or quotes are
    double-quoted with backslash escaping. The result starts with *prefix*
    unless *fields* is empty, in which case it is ``""``.
    """
    if not fields:
        return ""
    tokens = (
        f"{key}={_render_value(_truncate(value, max_value_length))}"
        for key, value in fields.items()
    )
    return prefix + " ".join(tokens)


class StructuredFormatter(logging.Formatter):
    """Root-handler formatter producing ``<level> <logger> <event> k=v ...``.

    Plain stdlib records (no ``structured_kv``) get the same layout without
    trailing fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = getattr(record, "structured_kv", {})
        line = (
            f"{record.levelname.lower()} {record.name} {record.getMessage()}"
            f"{format_kv_pairs(fields)}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class Logger:
    """Named event logger carrying optional bound context fields.

    Args:
        name: Name of the underlying stdlib logger, usually a service name.
        json_output: Serialize each event as a JSON object.
        max_value_length: Truncate longer field values; ``None`` disables it.
        context: Fields attached to every event (see ``bind``).
    """

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = DEFAULT_MAX_VALUE_LENGTH,
        context: dict[str, Any] | None = None,
    ) -> None:
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = max_value_length
        self._context = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **fields: Any) -> Logger:
        """Return a logger for the same name with *fields* added to its context."""
        return Logger(
            self._logger.name,
            json_output=self._json_output,
            max_value_length=self._max_value_length,
            context={**self._context, **fields},
        )

    def _fields(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        fields = {**self._context, **kwargs}
        limit = self._max_value_length
        if limit is None:
            return fields
        return {
            key: _truncate(value, limit) if len(str(value)) > limit else value
            for key, value in fields.items()
        }

    def _emit(self, level: int, event: str, kwargs: dict[str, Any], *, exc_info: bool) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = self._fields(kwargs)
        if not self._json_output:
            extra = {"structured_kv": fields} if fields else None
            self._logger.log(level, event, extra=extra, exc_info=exc_info)
            return
        payload = {
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
            "level": logging.getLevelName(level).lower(),
            "service": self._logger.name,
            "message": event,
            **fields,
        }
        self._logger.log(level, json.dumps(payload, default=str), exc_info=exc_info)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, event, kwargs, exc_info=False)

    def info(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.INFO, event, kwargs, exc_info=False)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.WARNING, event, kwargs, exc_info=False)

    def error(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.ERROR, event, kwargs, exc_info=False)

    def critical(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.CRITICAL, event, kwargs, exc_info=False)

    def exception(self, event: str, **kwargs: Any) -> None:
        """Log at ERROR with the traceback of the exception being handled."""
        self._emit(logging.ERROR, event, kwargs, exc_info=True)

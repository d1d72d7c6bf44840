"""Structured logging for the ledger sync service.

Every update cycle runs under a sync key (``nft:<address>@<network>``).
The key lives in a context variable, so it follows the cycle across awaits
and lands on each record emitted while the cycle is active.
"""

import copy
import logging
import sys
from contextvars import ContextVar
from typing import Any, Optional

from pythonjsonlogger import jsonlogger


_current_sync_key: ContextVar[Optional[str]] = ContextVar("sync_key", default=None)

_NO_KEY = "N/A"

# Libraries whose INFO chatter drowns out cycle logs.
_NOISY_LOGGERS = ("aiohttp", "asyncio", "redis", "httpx")

_JSON_LAYOUT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_TEXT_LAYOUT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def get_sync_key() -> Optional[str]:
    """Return the sync key of the cycle running in this context, if any."""
    return _current_sync_key.get()


def _record_key(record: logging.LogRecord) -> Optional[str]:
    key = getattr(record, "sync_key", None)
    return None if key in (None, "", _NO_KEY) else key


class SyncKeyFilter(logging.Filter):
    """Stamps ``record.sync_key`` from the active cycle.

    A key passed explicitly through ``extra`` is kept when no cycle is
    active. Records outside any cycle get the ``N/A`` placeholder.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.sync_key = get_sync_key() or _record_key(record) or _NO_KEY
        return True


class LedgerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with ``level``, ``logger``, ``service`` and ``sync_key`` keys."""

    def __init__(self, *args: Any, service_name: str = "ledger-sync", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        stamp = log_record.pop("asctime", None)
        log_record.pop("levelname", None)
        log_record.pop("name", None)
        log_record.pop("sync_key", None)

        log_record.update(
            time=stamp or self.formatTime(record),
            level=record.levelname,
            logger=record.name,
            service=self.service_name,
        )

        key = _record_key(record)
        if key:
            log_record["sync_key"] = key
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


class KeyedTextFormatter(logging.Formatter):
    """Human readable lines, with the sync key in brackets before the message."""

    def format(self, record: logging.LogRecord) -> str:
        key = _record_key(record)
        if not key:
            return super().format(record)
        # Format a shallow copy so other handlers see the untouched message.
        keyed = copy.copy(record)
        keyed.msg = f"[{key}] {record.msg}"
        return super().format(keyed)


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    service_name: str = "ledger-sync"
) -> logging.Logger:
    """Install a single handler on the root logger.

    JSON goes to stdout for log shippers. Text goes to stderr so the CLI
    can keep stdout for its report.

    Args:
        level: Level name; unknown names fall back to INFO.
        fmt: ``json`` or ``text``.
        service_name: Value of the ``service`` key in JSON output.

    Returns:
        The root logger.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if fmt == "json":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(LedgerJsonFormatter(_JSON_LAYOUT, service_name=service_name))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(KeyedTextFormatter(_TEXT_LAYOUT))
    handler.setLevel(log_level)
    handler.addFilter(SyncKeyFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


class LogContext:
    """Binds a sync key to every record logged inside the ``with`` block.

    Nested contexts restore the outer key on exit.
    """

    def __init__(self, sync_key: Optional[str] = None):
        self.sync_key = sync_key
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        if self.sync_key:
            self._tokens.append(_current_sync_key.set(self.sync_key))
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._tokens:
            _current_sync_key.reset(self._tokens.pop())

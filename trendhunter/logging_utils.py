"""Log output setup and throttled warnings."""

from __future__ import annotations

import datetime
import logging
import sys
import threading
import time
from typing import Any, Iterable

import orjson

TEXT_FORMAT = "%(asctime)sZ [%(levelname)s] %(name)s | %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty below WARNING.
QUIET_LOGGERS: tuple[str, ...] = ("aiohttp", "asyncio", "sqlalchemy.engine", "aiosqlite")

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
_handler_attr = "_trendhunter_handler"


class _UTCTextFormatter(logging.Formatter):
    converter = time.gmtime


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are kept as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc)
        doc: dict[str, Any] = {
            "ts": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        extras = {
            k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS and not k.startswith("_")
        }
        doc.update(extras)
        if record.exc_info:
            doc["exc"] = self.formatException(record.exc_info)
        return orjson.dumps(doc, default=str).decode()


def setup_logging(
    level: int | str = logging.INFO,
    *,
    json: bool = False,
    quiet: Iterable[str] = QUIET_LOGGERS,
) -> logging.Handler:
    """Route the root logger to stdout through exactly one handler.

    Repeated calls reconfigure that handler instead of adding another.
    """

    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    root = logging.getLogger()
    handler: logging.Handler | None = getattr(root, _handler_attr, None)
    if handler not in root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        root.addHandler(handler)
        setattr(root, _handler_attr, handler)
    assert handler is not None
    handler.setFormatter(JsonFormatter() if json else _UTCTextFormatter(TEXT_FORMAT, TEXT_DATEFMT))
    handler.setLevel(level)
    root.setLevel(level)

    floor = max(level, logging.WARNING)
    for name in quiet:
        logging.getLogger(name).setLevel(floor)
    return handler


class _Throttle:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: dict[str, float] = {}

    def allow(self, key: str, interval: float) -> bool:
        now = time.monotonic()
        with self._lock:
            last = self._last.get(key)
            if last is not None and now - last < interval:
                return False
            self._last[key] = now
        return True

    def clear(self) -> None:
        with self._lock:
            self._last.clear()


_throttle = _Throttle()


def warn_once_per(
    minutes: float,
    key: str,
    message: str,
    *args: Any,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> bool:
    """Log a warning for *key* at most once every *minutes*; ``True`` if logged."""

    if not _throttle.allow(key, max(0.0, minutes) * 60.0):
        return False
    (logger or logging.getLogger("trendhunter")).warning(message, *args, **kwargs)
    return True


def reset_warn_once_cache() -> None:
    _throttle.clear()


__all__ = ["JsonFormatter", "setup_logging", "warn_once_per", "reset_warn_once_cache"]

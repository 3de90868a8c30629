# Small parsing helpers shared by providers, config and the CLI.

from __future__ import annotations

import datetime
import logging
import math
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


_SECRET_QUERY_KEYS = {"api-key", "api_key", "apikey", "token", "auth", "secret", "password"}


def redact_url(url: str) -> str:
    """Return *url* with secret query values (``api-key`` and friends) replaced by ``REDACTED``."""

    parts = urlsplit(url)
    if not parts.query:
        return url
    query_pairs = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key.lower() in _SECRET_QUERY_KEYS:
            query_pairs.append((key, "REDACTED"))
        else:
            query_pairs.append((key, value))
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query_pairs, doseq=True), parts.fragment)
    )


def coerce_float(value: Any) -> float | None:
    """Best-effort numeric conversion; ``None`` for missing or NaN values."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value.strip())
        except ValueError:
            return None
    elif isinstance(value, Mapping):
        for key in ("usd", "value", "price", "amount"):
            if key in value:
                return coerce_float(value.get(key))
        return None
    else:
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def coerce_int(value: Any) -> int | None:
    numeric = coerce_float(value)
    if numeric is None:
        return None
    return int(numeric)


def parse_timestamp(value: Any) -> datetime.datetime | None:
    """Convert epoch seconds/milliseconds or an ISO string to naive UTC."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        numeric = coerce_float(raw)
        if numeric is None:
            try:
                parsed = datetime.datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parse_timestamp(parsed)
        value = numeric
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts <= 0:
            return None
        if ts > 1e12:
            ts /= 1000.0
        return datetime.datetime.fromtimestamp(ts, datetime.timezone.utc).replace(
            tzinfo=None
        )
    return None


def utcnow() -> datetime.datetime:
    """Naive UTC ``datetime``; every timestamp in the store uses this form."""

    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


__all__ = [
    "redact_url",
    "coerce_float",
    "coerce_int",
    "parse_timestamp",
    "utcnow",
]

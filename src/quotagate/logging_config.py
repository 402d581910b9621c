"""
Structured logging configuration for quotagate.

Log records may carry request context from the embedding application
(user profiles, request headers, URLs). Before output:
- credential and personal fields are dropped from extras
- credentials and emails are redacted from messages and tracebacks
- URLs are reduced to their path (query strings may carry tokens)

Usage:
    from quotagate.logging_config import setup_logging, get_logger

    setup_logging()  # once, from the composition root
    log = get_logger(__name__)
    log.info("Key frozen", extra={"key": "student:/courses", "freeze_ms": 120000})
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

import orjson

_URL_RE = re.compile(r"(https?://[^\s\"'<>]+)")

# Applied in order, after URLs are reduced to paths
_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+\b"), "[JWT]"),
    (re.compile(r"\b(bearer|token)[=:\s]+['\"]?[\w\-\.]+['\"]?", re.I), "[TOKEN]"),
    (re.compile(r"\b(password|passwd|pwd)[=:]\s*['\"]?\S+['\"]?", re.I), "[PASSWORD]"),
    (re.compile(r"\b(sessionid|csrftoken|cookie)[=:]\s*['\"]?[\w\-\.]+['\"]?", re.I), "[COOKIE]"),
    (re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w+\b"), "[EMAIL]"),
)

# Extra fields that are never written, matched case-insensitively and as substrings
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "secret",
        "token",
        "authorization",
        "cookie",
        "session",
        "credential",
        "csrf",
        "email",
        "phone",
        "first_name",
        "last_name",
    }
)

# Extra fields replaced wholesale instead of dumped
REDACTED_FIELDS: dict[str, str] = {
    "body": "[BODY]",
    "headers": "[HEADERS]",
    "profile": "[PROFILE]",
}

MAX_EXTRA_DEPTH = 3
MAX_LIST_ITEMS = 10

# Libraries that are chatty at INFO
_QUIET_LOGGERS = ("aiohttp", "aiohttp.access", "asyncio")

# Attributes every LogRecord has; anything else came in via extra=
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def _url_path(url: str) -> str:
    """Reduce a URL to its path."""
    return urlsplit(url).path or "/"


def _url_to_path(match: re.Match[str]) -> str:
    path = _url_path(match.group(1))
    return "[URL]" if path == "/" else path


def redact_text(text: str) -> str:
    """Redact URLs, credentials and emails in free-form text."""
    if not text:
        return text
    text = _URL_RE.sub(_url_to_path, text)
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def _is_blocked(field_name: str) -> bool:
    lowered = field_name.lower()
    return any(blocked in lowered for blocked in BLOCKED_FIELDS)


def _clean_value(value: Any, depth: int) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, (list, tuple)):
        if len(value) > MAX_LIST_ITEMS:
            return f"[list:{len(value)} items]"
        return list(value)
    if isinstance(value, dict):
        return _filter_extra(value, _depth=depth + 1)
    return redact_text(str(value))


def _filter_extra(extra: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Drop blocked fields and clean values. Nested dicts stop at MAX_EXTRA_DEPTH."""
    if _depth > MAX_EXTRA_DEPTH:
        return {"_truncated": "max depth exceeded"}

    out: dict[str, Any] = {}
    for name, value in extra.items():
        if _is_blocked(name):
            continue
        lowered = name.lower()
        if lowered in REDACTED_FIELDS:
            out[name] = REDACTED_FIELDS[lowered]
            continue
        if lowered == "url" and isinstance(value, str):
            out["path"] = _url_path(value)
            continue
        out[name] = _clean_value(value, _depth)
    return out


def _extra_of(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


def _message_of(record: logging.LogRecord) -> str:
    return redact_text(record.getMessage())


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    {"ts":"2024-01-01T00:00:00.000+00:00","level":"INFO","logger":"...","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": _message_of(record),
        }
        if record.levelno >= logging.WARNING:
            payload.update(file=record.filename, line=record.lineno)
        if record.exc_info:
            payload["exc"] = redact_text(self.formatException(record.exc_info))

        payload.update(_filter_extra(_extra_of(record)))
        return orjson.dumps(payload, default=str).decode()


class SimpleFormatter(logging.Formatter):
    """Single-line "LEVEL logger: msg | k=v" output for development."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:<8} {record.name}: {_message_of(record)}"
        fields = _filter_extra(_extra_of(record))
        if not fields:
            return line
        return line + " | " + " ".join(f"{k}={v}" for k, v in fields.items())


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """Replace root handlers with a single redacting stream handler.

    Args:
        level: Root log level (default INFO).
        json_format: JSON lines if True, SimpleFormatter otherwise.
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(sys.stderr if stream is None else stream)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__."""
    return logging.getLogger(name)

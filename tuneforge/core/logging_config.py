"""Logging setup shared by the API process and the polling worker.

``setup_logging`` installs one stdout handler on the root logger:

- ``json``: one object per line with ``timestamp``, ``level``, ``logger``,
  ``message``, the current ``request_id`` and any ``extra`` fields
  (``task_id``, ``clip_id``, ``user_id``...). Meant for log shippers.
- ``text``: a single readable line, request id in brackets.

Every record passes through ``_RedactingFilter`` first, so the provider key,
the JWT secret and the sweep token never appear in output, whether they sit
in the message, in its arguments or in a traceback.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Iterable, Optional


# Set by RequestContextMiddleware; empty for worker sweeps.
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

_REDACTED = "***"

# Shapes that look like credentials even when we do not know the value.
_CREDENTIAL_SHAPES = (
    re.compile(r"(?i)(bearer\s+)[\w.\-]{16,}"),
    re.compile(r"(?i)((?:api[_-]?key|secret|password|x-sweep-token)[\"']?\s*[=:]\s*[\"']?)[^\s,\"']{6,}"),
)

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "request_id"}


class _RedactingFilter(logging.Filter):
    """Scrub configured secret values and credential-shaped strings.

    The message is rendered (``msg % args``) before scrubbing so a secret
    passed as an argument is caught too.
    """

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        # Longest first so a secret containing another is replaced whole.
        self._secrets = sorted({s for s in secrets if s and len(s) >= 6}, key=len, reverse=True)

    def scrub(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, _REDACTED)
        for shape in _CREDENTIAL_SHAPES:
            text = shape.sub(lambda m: m.group(1) + _REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.scrub(record.getMessage())
        record.args = ()
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self.scrub(record.exc_text)
        record.request_id = request_id_var.get()
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if getattr(record, "request_id", ""):
            entry["request_id"] = record.request_id
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and key not in entry
        )
        if record.exc_text:
            entry["exc_info"] = record.exc_text
        return json.dumps(entry, default=str)


class _TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not getattr(record, "request_id", ""):
            record.request_id = "-"
        return super().format(record)


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    secrets: Iterable[str] = (),
) -> None:
    """Configure the root logger. Safe to call more than once.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Defaults to INFO.
        log_format: ``"json"`` (default) or ``"text"``.
        secrets: Literal values to redact wherever they appear.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_RedactingFilter(secrets))
    handler.setFormatter(_JsonFormatter() if fmt == "json" else _TextFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every provider request URL at INFO.
    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured", extra={"level": level, "format": fmt})

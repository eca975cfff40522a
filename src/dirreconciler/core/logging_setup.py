"""
Central logging for the reconciler.

- Console handler on stderr: INFO..CRITICAL by default
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Per-run action file: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: masks API keys, bearer tokens and passwords in msg and args
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class MaskSecretsFilter(logging.Filter):
    """
    Redact common secrets (x-api-key headers, bearer tokens, passwords) from log records.
    """

    _patterns = [
        re.compile(r"(x-api-key['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(api[_-]?key['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password['\"]?\s*[=:]\s*['\"]?)([^,\s'\"]+)", re.IGNORECASE),
        re.compile(r"(\btoken['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(
                    self._mask(a) if isinstance(a, str) else a for a in record.args
                )
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class _ContextDefaults(logging.Filter):
    """Fill the formatter's context fields for records logged outside an adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for attr in ("run_id", "action", "kind"):
            if not hasattr(record, attr):
                setattr(record, attr, "-")
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _replace_console_handler(base: logging.Logger, level: str, formatter: logging.Formatter) -> None:
    """Keep exactly one StreamHandler bound to the current sys.stderr."""
    for h in list(base.handlers):
        if type(h) is logging.StreamHandler:
            base.removeHandler(h)
            h.close()
    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(_level(level, logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(_ContextDefaults())
    sh.addFilter(MaskSecretsFilter())
    base.addHandler(sh)


def _ensure_app_file_handler(base: logging.Logger, base_dir: str, level: str, formatter: logging.Formatter) -> None:
    """One TimedRotatingFileHandler on <base_dir>/app.log; handlers for other paths are replaced."""
    os.makedirs(base_dir, exist_ok=True)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(h.baseFilename) != desired:
                base.removeHandler(h)
                h.close()

    if any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler)
        and os.path.abspath(h.baseFilename) == desired
        for h in base.handlers
    ):
        return

    rh = logging.handlers.TimedRotatingFileHandler(
        desired, when="midnight", backupCount=14, encoding="utf-8", utc=True, delay=False
    )
    rh.setLevel(_level(level, logging.DEBUG))
    rh.setFormatter(formatter)
    rh.addFilter(_ContextDefaults())
    rh.addFilter(MaskSecretsFilter())
    base.addHandler(rh)


def build_logger(
    *,
    name: str = "drec",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    - The base logger `<name>` holds console + rotating file handlers, so the
      library loggers (`drec.http`, `drec.poller`, ...) land in the same sinks.
    - A child logger `<name>.<action>.<run_id>` adds the per-run action file.
    """
    fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s kind=%(kind)s | %(message)s"
    )
    formatter = _utc_formatter(fmt)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _replace_console_handler(base, console_level, formatter)
    _ensure_app_file_handler(base, base_dir, file_level, formatter)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not getattr(child, "_drec_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        os.makedirs(dated_dir, exist_ok=True)
        action_file = os.path.join(dated_dir, f"{action}_{run_id}.log")
        Path(action_file).touch(exist_ok=True)

        fh = logging.FileHandler(action_file, encoding="utf-8", delay=False)
        fh.setLevel(_level(file_level, logging.DEBUG))
        fh.setFormatter(formatter)
        fh.addFilter(_ContextDefaults())
        fh.addFilter(MaskSecretsFilter())
        child.addHandler(fh)
        child._drec_action_configured = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(
        child,
        {"run_id": run_id, "action": action, "kind": (extra or {}).get("kind") or "-"},
    )
    adapter.debug("Logger initialised")
    return adapter

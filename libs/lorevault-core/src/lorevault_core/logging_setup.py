"""Process-wide logging configuration."""

from __future__ import annotations

import logging
import logging.config
import os
import re
from typing import Any

_SECRET_PATTERNS = (
    (
        re.compile(r"(?i)(password|passwd|pwd|api[_-]?key|secret|token)(\s*[=:]\s*)([^\s,;&'\"]+)"),
        r"\1\2***",
    ),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/-]+=*"), r"\1***"),
    (re.compile(r"(postgres(?:ql)?(?:\+\w+)?://[^:/\s]+:)[^@\s]+@"), r"\1***@"),
)


def mask_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SensitiveDataFilter(logging.Filter):
    """Mask credentials in the rendered message of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    name = (level or os.getenv("LOG_LEVEL", "info")).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | int | None = None, log_dir: str | None = None) -> None:
    """Configure root logging via dictConfig.

    Level comes from ``level`` or ``LOG_LEVEL`` (default ``info``). A file handler
    writing ``lorevault.log`` is added when ``log_dir`` or ``LOREVAULT_LOG_DIR``
    is set.
    """
    loglevel = _resolve_level(level)
    log_dir = log_dir or os.getenv("LOREVAULT_LOG_DIR")

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "filters": ["sensitive"],
            "level": loglevel,
            "stream": "ext://sys.stderr",
        },
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "filters": ["sensitive"],
            "level": loglevel,
            "filename": os.path.join(log_dir, "lorevault.log"),
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"sensitive": {"()": SensitiveDataFilter}},
            "formatters": {
                "standard": {
                    "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": handlers,
            "root": {"handlers": list(handlers), "level": loglevel},
        }
    )

    # HTTP client request logs only in debug mode
    quiet = logging.DEBUG if loglevel <= logging.DEBUG else logging.WARNING
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(quiet)

# core/logger.py
"""
Process-wide logging for the storefront tools.

Handlers are installed once on the root logger, from environment settings,
and every handler masks bearer tokens and passwords before a record is
written anywhere.
"""
import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import List

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_LOG_FILE = "/data/storefront.log"

_SECRET_PATTERNS = [
    (re.compile(r"(Bearer\s+)[^\s,'\"]+", re.IGNORECASE), r"\1***"),
    (
        re.compile(
            r"""(["']?(?:password|newPassword|token)["']?\s*[:=]\s*["']?)[^\s,'"}]+""",
            re.IGNORECASE,
        ),
        r"\1***",
    ),
]

_configured = False


def redact(message: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class RedactingFilter(logging.Filter):
    """Rewrite a record's message with credentials masked; never drops records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _file_handler() -> logging.Handler:
    path = os.getenv("LOG_FILE", DEFAULT_LOG_FILE)
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
        backupCount=int(os.getenv("LOG_BACKUPS", "3")),
        encoding="utf-8",
    )


def _build_handlers(level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if _env_flag("LOG_TO_STDOUT", "true"):
        handlers.append(logging.StreamHandler(sys.stdout))
    if _env_flag("LOG_TO_FILE", "false"):
        try:
            handlers.append(_file_handler())
        except OSError as e:
            sys.stderr.write(f"storefront: file logging disabled: {e}\n")

    formatter = logging.Formatter(LOG_FORMAT)
    secrets = RedactingFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(secrets)
    return handlers


def setup_logging():
    global _configured
    if _configured:
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    # Leave handlers installed by the host application (or pytest) alone
    if not root.handlers:
        for handler in _build_handlers(level):
            root.addHandler(handler)

    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)

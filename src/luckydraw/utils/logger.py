"""Logging setup for the lucky draw backend.

`get_logger(name)` configures the root logger on first use: a console
handler always, a file handler when LOG_FILE is set. LOG_LEVEL picks the
level (INFO by default). The HTTP client libraries used by the Supabase
store are held at WARNING unless LOG_HTTP_LEVEL says otherwise.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# urllib3 logs every pooled connection at DEBUG
QUIET_LOGGERS = ('urllib3', 'requests', 'httpx')

_configured = False


def _level(value: str, fallback: int) -> int:
    return getattr(logging, value.strip().upper(), fallback)


def _file_handler(log_file: str, formatter: logging.Formatter) -> Optional[logging.Handler]:
    path = Path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding='utf-8')
    except OSError as exc:
        logging.getLogger(__name__).warning(f"Cannot open log file {path}: {exc}; logging to console only")
        return None
    handler.setFormatter(formatter)
    return handler


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    level = _level(os.getenv('LOG_LEVEL', 'INFO'), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    log_file = os.getenv('LOG_FILE', '')
    if log_file:
        handler = _file_handler(log_file, formatter)
        if handler is not None:
            root.addHandler(handler)

    http_level = _level(os.getenv('LOG_HTTP_LEVEL', 'WARNING'), logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, http_level))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the shared root configuration."""
    _ensure_configured()
    return logging.getLogger(name)

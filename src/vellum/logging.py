"""Audit logging for vellum.

Every mutation, gate run and MCP tool call is written as one JSON object per
line to ``.vellum/vellum.log``. The file rotates at 5MB, keeping 3 backups.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FILENAME = "vellum.log"
ROOT_LOGGER = "vellum"

_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3
_lock = threading.Lock()

# (LogRecord attribute, JSON key) pairs copied from ``extra=``
_EXTRA_FIELDS = (
    ("tool", "tool"),
    ("issue_id", "issue_id"),
    ("args_data", "args"),
    ("duration_ms", "duration_ms"),
    ("error", "error"),
)


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({key: getattr(record, attr) for attr, key in _EXTRA_FIELDS if hasattr(record, attr)})
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = f"{type(exc).__name__}: {exc}"
        return json.dumps(entry, default=str)


def _ledger_handlers(logger: logging.Logger) -> list[RotatingFileHandler]:
    return [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]


def setup_logging(vellum_dir: Path) -> logging.Logger:
    """Route the ``vellum`` logger to the project's audit log.

    Calling again for the same project is a no-op. Calling for a different
    project closes the previous file handler first, so one process never
    writes to two ledgers' logs.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    log_path = vellum_dir / LOG_FILENAME
    wanted = os.path.abspath(log_path)

    with _lock:
        for handler in _ledger_handlers(logger):
            if handler.baseFilename == wanted:
                return logger
            logger.removeHandler(handler)
            handler.close()

        handler = RotatingFileHandler(log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

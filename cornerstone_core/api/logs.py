# cornerstone_core/api/logs.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
import time
from collections import deque
from typing import Deque, Dict

from fastapi import APIRouter, Depends, Query

from .security import require_session

router = APIRouter(prefix="/logs", tags=["Logs"])

MAX_LOGS = 500
LOG_BUFFER: Deque[Dict] = deque(maxlen=MAX_LOGS)


def add_log_entry(level: str, message: str, logger_name: str = "cornerstone_core"):
    LOG_BUFFER.append(
        {
            "timestamp": time.time(),
            "iso": time.strftime("%Y-%m-%d %H:%M:%S"),
            "level": level.upper(),
            "logger": logger_name,
            "message": message.strip(),
        }
    )


class LogInterceptor(logging.Handler):
    def emit(self, record):
        try:
            add_log_entry(record.levelname, record.getMessage(), record.name)
        except Exception:
            self.handleError(record)


def install_log_interceptor(logger: logging.Logger = None) -> LogInterceptor:
    """Attach the in-memory buffer to ``logger`` (root by default), once."""
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if isinstance(handler, LogInterceptor):
            return handler
    handler = LogInterceptor()
    target.addHandler(handler)
    return handler


install_log_interceptor()


def get_log_history_snapshot(limit: int = 200):
    safe_limit = max(1, min(int(limit), MAX_LOGS))
    return list(LOG_BUFFER)[-safe_limit:]


@router.get("/history")
async def get_log_history(limit: int = Query(default=200), _user: str = Depends(require_session)):
    return get_log_history_snapshot(limit)

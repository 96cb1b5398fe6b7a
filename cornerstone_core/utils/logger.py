# cornerstone_core/utils/logger.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

from .config import settings

_LIFECYCLE_LOCK = threading.Lock()
_LOG_DIR = Path(settings.LOG_DIR or "logs")


class DailyFileHandler(logging.Handler):
    """Append records to <log_dir>/<logger-name>-YYYY-MM-DD.log, rolling over at midnight."""

    def __init__(self, log_dir: Path, logger_name: str, encoding: str = "utf-8"):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name
        self.encoding = encoding
        self._stream = None
        self._opened_for = None

    def _stream_for_today(self):
        today = datetime.now().date()
        if self._stream is not None and self._opened_for == today:
            return self._stream
        self._close_stream()
        target = self.log_dir / f"{self.logger_name}-{today:%Y-%m-%d}.log"
        self._stream = open(target, "a", encoding=self.encoding)
        self._opened_for = today
        return self._stream

    def _close_stream(self):
        if self._stream is not None:
            try:
                self._stream.close()
            finally:
                self._stream = None
                self._opened_for = None

    def emit(self, record):
        try:
            stream = self._stream_for_today()
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self):
        self._close_stream()
        super().close()


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_level(level) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level or "INFO").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(name: str, *, with_console: bool = True, level=logging.INFO) -> logging.Logger:
    """Configure ``name`` with console output and a daily log file under the log dir.

    Child loggers (``cornerstone_core.dispatcher`` and so on) propagate into the
    configured parent, so only top-level names need to be set up.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_parse_level(level))
    logger.propagate = False

    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = _build_formatter()

    if with_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    file_handler = DailyFileHandler(_LOG_DIR, logger_name=name)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    return logger


def _state_file() -> Path:
    return _LOG_DIR / ".lifecycle_state.json"


def _read_lifecycle_state() -> dict:
    path = _state_file()
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _write_lifecycle_state(payload: dict):
    path = _state_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    with temp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=True, indent=2)
    os.replace(temp_path, path)


def _update_service_state(service_name: str, updater) -> dict:
    with _LIFECYCLE_LOCK:
        state = _read_lifecycle_state()
        service_state = state.get(service_name) or {}
        marker = updater(service_state)
        state[service_name] = service_state
        _write_lifecycle_state(state)
        return marker


def register_lifecycle_start(service_name: str) -> dict:
    """Record a process start; the first start ever is a startup, later ones restarts."""
    now = datetime.now(timezone.utc).isoformat()
    pid = os.getpid()

    def _apply(service_state: dict) -> dict:
        starts = int(service_state.get("starts", 0)) + 1
        event = "startup" if starts == 1 else "restart"
        service_state.update(
            {"starts": starts, "last_start_at_utc": now, "last_pid": pid, "last_event": event}
        )
        return {"event": event, "starts": starts, "pid": pid, "at_utc": now}

    return _update_service_state(service_name, _apply)


def register_lifecycle_shutdown(service_name: str) -> dict:
    now = datetime.now(timezone.utc).isoformat()
    pid = os.getpid()

    def _apply(service_state: dict) -> dict:
        service_state.update({"last_shutdown_at_utc": now, "last_shutdown_pid": pid})
        return {"event": "shutdown", "pid": pid, "at_utc": now}

    return _update_service_state(service_name, _apply)

# cornerstone_core/core/plugin_runner.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
import json
import logging
import os
import re
import signal
import sys
from dataclasses import dataclass
from pathlib import PureWindowsPath
from typing import Any, Dict, List, Optional, Tuple

from ..db import utc_now
from ..models.plugin import Execution, Plugin
from ..utils.config import DEFAULT_PLUGIN_TIMEOUT
from .plugin_api import (
    EXECUTION_STATUS_FAILED,
    EXECUTION_STATUS_SUCCESS,
    EXECUTION_STATUS_TIMEOUT,
    MAX_CAPTURE_CHARS,
    TIMEOUT_MESSAGE,
    TRUNCATION_MARKER,
    PluginConfigError,
    PluginValidationError,
)

logger = logging.getLogger("cornerstone_core.plugin_runner")

_SEGMENT_SPLIT_RE = re.compile(r"[\\/]+")
_READ_CHUNK = 4096


def resolve_script_path(work_dir: str, entry_file: str) -> str:
    """Join ``entry_file`` onto ``work_dir`` once it is known to stay inside it."""
    raw = str(entry_file or "").strip()
    if not raw:
        raise PluginValidationError("Plugin entry file is required")
    if "\x00" in raw:
        raise PluginValidationError("Plugin entry file contains an invalid character")
    if ".." in _SEGMENT_SPLIT_RE.split(raw):
        raise PluginValidationError("Plugin entry file must not contain '..' segments")
    if os.path.isabs(raw) or raw.startswith(("/", "\\")) or PureWindowsPath(raw).drive:
        raise PluginValidationError("Plugin entry file must be a relative path")

    clean = os.path.normpath(raw)
    if clean in ("", "."):
        raise PluginValidationError("Plugin entry file is required")
    return os.path.join(work_dir, clean)


def build_plugin_command(language: str, script_path: str) -> Tuple[str, List[str]]:
    if language == "go":
        return "go", ["run", script_path]
    if language == "python":
        return sys.executable or "python3", [script_path]
    if language == "bash":
        return "bash", [script_path]
    raise PluginConfigError(f"Unsupported plugin language: {language}")


def resolve_timeout(plugin_timeout: Optional[int], default_timeout: Optional[int]) -> int:
    if plugin_timeout and int(plugin_timeout) > 0:
        return int(plugin_timeout)
    if default_timeout and int(default_timeout) > 0:
        return int(default_timeout)
    return DEFAULT_PLUGIN_TIMEOUT


def truncate_text(content: str, max_length: int = MAX_CAPTURE_CHARS, truncated: bool = False) -> str:
    text = content or ""
    if len(text) > max_length:
        return text[:max_length] + TRUNCATION_MARKER
    if truncated:
        return text + TRUNCATION_MARKER
    return text


class BoundedBuffer:
    """Keeps the first ``limit`` bytes written to it and remembers whether more arrived."""

    def __init__(self, limit: int):
        self.limit = max(0, int(limit))
        self.overflowed = False
        self._data = bytearray()

    def feed(self, chunk: bytes):
        room = self.limit - len(self._data)
        if room > 0:
            self._data.extend(chunk[:room])
        if len(chunk) > room:
            self.overflowed = True

    def text(self) -> str:
        return bytes(self._data).decode("utf-8", errors="replace")


@dataclass
class ProcessResult:
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    timed_out: bool = False
    error: str = ""


class ProcessSpawner:
    """Runs one command with a deadline and bounded stdout/stderr capture.

    The child gets its own session so that the whole process group can be
    killed when the deadline passes. No resource limits are applied.
    """

    def __init__(self, capture_limit: int = MAX_CAPTURE_CHARS, kill_grace_sec: float = 5.0):
        self.capture_limit = capture_limit
        self.kill_grace_sec = kill_grace_sec
        self._posix = os.name == "posix"

    async def run(
        self,
        command: str,
        args: List[str],
        *,
        cwd: str,
        stdin_data: bytes,
        env: Dict[str, str],
        timeout: float,
    ) -> ProcessResult:
        stdout_buf = BoundedBuffer(self.capture_limit)
        stderr_buf = BoundedBuffer(self.capture_limit)
        result = ProcessResult()

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=self._posix,
            )
        except (OSError, ValueError) as exc:
            # ValueError: NUL byte in the arguments or environment
            result.error = f"failed to start {command}: {exc}"
            return result

        async def _communicate():
            await asyncio.gather(
                self._feed_stdin(proc, stdin_data),
                self._drain(proc.stdout, stdout_buf),
                self._drain(proc.stderr, stderr_buf),
            )
            await proc.wait()

        try:
            await asyncio.wait_for(_communicate(), timeout=max(0.1, float(timeout)))
        except asyncio.TimeoutError:
            result.timed_out = True
            await self._kill(proc)
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        result.returncode = proc.returncode
        result.stdout = stdout_buf.text()
        result.stderr = stderr_buf.text()
        result.stdout_truncated = stdout_buf.overflowed
        result.stderr_truncated = stderr_buf.overflowed
        return result

    @staticmethod
    async def _feed_stdin(proc, data: bytes):
        try:
            if data:
                proc.stdin.write(data)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Plugin process %s closed stdin before reading the envelope", proc.pid)
        finally:
            proc.stdin.close()

    @staticmethod
    async def _drain(stream, buffer: BoundedBuffer):
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            buffer.feed(chunk)

    async def _kill(self, proc):
        if proc.returncode is None:
            try:
                if self._posix:
                    os.killpg(proc.pid, signal.SIGKILL)
                else:
                    proc.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_sec)
        except asyncio.TimeoutError:
            logger.error("Plugin process %s did not exit after kill", proc.pid)


def classify_result(result: ProcessResult) -> Tuple[str, str]:
    """Map a finished process to (status, error text before truncation)."""
    if result.timed_out:
        return EXECUTION_STATUS_TIMEOUT, TIMEOUT_MESSAGE

    err_msg = ""
    if result.error:
        err_msg = result.error
    elif result.returncode is None:
        err_msg = "process did not report an exit status"
    elif result.returncode < 0:
        err_msg = f"signal: {-result.returncode}"
    elif result.returncode != 0:
        err_msg = f"exit status {result.returncode}"

    status = EXECUTION_STATUS_FAILED if err_msg else EXECUTION_STATUS_SUCCESS
    return status, f"{err_msg}\n{result.stderr}".strip()


class ExecutionRunner:
    """Executes one plugin invocation to completion and records it in the ledger."""

    def __init__(self, ledger, settings_service, spawner: Optional[ProcessSpawner] = None, event_bus: Any = None):
        self.ledger = ledger
        self.settings_service = settings_service
        self.spawner = spawner or ProcessSpawner()
        self.event_bus = event_bus

    async def execute(
        self,
        plugin: Plugin,
        table_id: str,
        record_id: Optional[str],
        trigger: str,
        payload: Optional[Dict[str, Any]],
        actor_id: Optional[str] = None,
    ) -> Execution:
        default_timeout, work_dir = await asyncio.to_thread(self.settings_service.get_plugin_runtime_defaults)
        timeout_sec = resolve_timeout(plugin.timeout, default_timeout)

        # Everything that can be rejected is rejected before the ledger row exists
        script_path = resolve_script_path(work_dir, plugin.entry_file)
        command, args = build_plugin_command(plugin.language, os.path.abspath(script_path))

        execution = await asyncio.to_thread(
            self.ledger.start,
            plugin.id,
            table_id,
            record_id,
            trigger,
            actor_id or plugin.created_by,
        )

        envelope = {
            "plugin_id": plugin.id,
            "trigger": trigger,
            "table_id": table_id,
            "record_id": record_id or "",
            "payload": payload if payload is not None else {},
        }
        env = os.environ.copy()
        env["PLUGIN_ID"] = plugin.id
        env["PLUGIN_TRIGGER"] = trigger
        env["PLUGIN_CONFIG"] = plugin.config_values or ""

        logger.info(
            "Executing plugin %s (%s) for table %s trigger=%s execution=%s timeout=%ss",
            plugin.id,
            plugin.language,
            table_id,
            trigger,
            execution.id,
            timeout_sec,
        )
        try:
            result = await self.spawner.run(
                command,
                args,
                cwd=work_dir,
                stdin_data=json.dumps(envelope, default=str).encode("utf-8"),
                env=env,
                timeout=timeout_sec,
            )
            status, error_text = classify_result(result)
        except Exception as exc:
            logger.exception("Plugin %s execution %s crashed", plugin.id, execution.id)
            finished_at = utc_now()
            duration_ms = max(0, int((finished_at - execution.started_at).total_seconds() * 1000))
            await asyncio.to_thread(
                self.ledger.finish,
                execution,
                EXECUTION_STATUS_FAILED,
                "",
                truncate_text(f"execution error: {exc}"),
                duration_ms,
                finished_at,
            )
            raise

        finished_at = utc_now()
        duration_ms = max(0, int((finished_at - execution.started_at).total_seconds() * 1000))

        finished = await asyncio.to_thread(
            self.ledger.finish,
            execution,
            status,
            truncate_text(result.stdout, truncated=result.stdout_truncated),
            truncate_text(error_text, truncated=result.stderr_truncated),
            duration_ms,
            finished_at,
        )

        log = logger.info if status == EXECUTION_STATUS_SUCCESS else logger.warning
        log("Plugin %s execution %s finished: status=%s duration=%dms", plugin.id, execution.id, status, duration_ms)

        if self.event_bus is not None:
            await self.event_bus.emit(
                "plugin.execution.finished",
                {
                    "execution_id": finished.id,
                    "plugin_id": finished.plugin_id,
                    "table_id": finished.table_id,
                    "trigger": finished.trigger,
                    "status": finished.status,
                    "duration_ms": finished.duration_ms,
                },
            )
        return finished

# cornerstone_core/core/dispatcher.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.plugin import Execution, ExecutePluginRequest
from .plugin_api import BindingNotFoundError, MutationEvent, PluginNotFoundError, validate_trigger

logger = logging.getLogger("cornerstone_core.dispatcher")

DEFAULT_WORKERS = 4
DEFAULT_QUEUE_SIZE = 1000
DEFAULT_PER_PLUGIN_LIMIT = 2


@dataclass
class TableTriggerJob:
    table_id: str
    trigger: str
    record_id: Optional[str]
    actor_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginJob:
    plugin_id: str
    table_id: str
    trigger: str
    record_id: Optional[str]
    actor_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


class PluginDispatcher:
    """Routes record mutations and manual requests to the execution runner.

    Triggered work goes through a bounded queue served by a fixed set of
    worker tasks. A table trigger job resolves its bindings and fans out into
    one plugin job per bound plugin; each plugin job runs under that plugin's
    semaphore. Nothing on this path raises back into the mutation caller.

    Manual execution bypasses the queue and is awaited by the caller.
    """

    def __init__(
        self,
        bindings,
        plugins,
        runner,
        *,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        per_plugin_limit: int = DEFAULT_PER_PLUGIN_LIMIT,
    ):
        self.bindings = bindings
        self.plugins = plugins
        self.runner = runner
        self.workers = max(1, int(workers or DEFAULT_WORKERS))
        self.queue_size = max(1, int(queue_size or DEFAULT_QUEUE_SIZE))
        self.per_plugin_limit = max(1, int(per_plugin_limit or DEFAULT_PER_PLUGIN_LIMIT))

        self._queue: Optional[asyncio.Queue] = None
        self._worker_tasks: List[asyncio.Task] = []
        self._plugin_slots: Dict[str, asyncio.Semaphore] = {}
        self._slot_users: Dict[str, int] = {}
        self._counters = {"accepted": 0, "dropped": 0, "executed": 0, "failed": 0}

    @property
    def running(self) -> bool:
        return bool(self._worker_tasks)

    def start(self):
        if self._worker_tasks:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._plugin_slots = {}
        self._slot_users = {}
        for idx in range(self.workers):
            task = asyncio.create_task(self._worker(idx), name=f"plugin-dispatch-{idx}")
            self._worker_tasks.append(task)
        logger.info(
            "Plugin dispatcher started: workers=%d queue_size=%d per_plugin_limit=%d",
            self.workers,
            self.queue_size,
            self.per_plugin_limit,
        )

    async def stop(self, drain_timeout: float = 0.0):
        if not self._worker_tasks:
            return
        if drain_timeout > 0:
            try:
                await asyncio.wait_for(self.drain(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Plugin dispatcher stopping with %d queued jobs", self._queue.qsize())

        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []
        logger.info("Plugin dispatcher stopped")

    async def drain(self):
        """Wait until every job accepted so far, including fan-out, has been processed."""
        if self._queue is not None:
            await self._queue.join()

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "workers": self.workers,
            "queue_size": self.queue_size,
            "queue_depth": self._queue.qsize() if self._queue is not None else 0,
            "per_plugin_limit": self.per_plugin_limit,
            "active_plugins": len(self._plugin_slots),
            **self._counters,
        }

    def trigger_by_table(
        self,
        table_id: str,
        trigger: str,
        record_id: Optional[str],
        actor_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ):
        """Queue a lifecycle trigger for ``table_id`` and return immediately."""
        job = TableTriggerJob(
            table_id=table_id,
            trigger=trigger,
            record_id=record_id,
            actor_id=actor_id,
            payload=copy.deepcopy(payload) if payload is not None else {},
        )
        self._enqueue(job)

    async def on_record_mutation(self, event: MutationEvent):
        self.trigger_by_table(event.table_id, event.trigger, event.record_id, event.actor_id, event.payload)

    async def execute_manual(self, plugin_id: str, caller_id: str, request: ExecutePluginRequest) -> Execution:
        plugin = await asyncio.to_thread(self.plugins.get_owned_plugin, plugin_id, caller_id)
        trigger = validate_trigger(request.trigger)
        bound = await asyncio.to_thread(self.bindings.exists, plugin.id, request.table_id, trigger)
        if not bound:
            raise BindingNotFoundError("plugin is not bound to this table and trigger")

        logger.info("Manual execution of plugin %s on table %s requested by %s", plugin.id, request.table_id, caller_id)
        return await self.runner.execute(
            plugin,
            request.table_id,
            request.record_id or None,
            trigger,
            copy.deepcopy(request.payload or {}),
            caller_id,
        )

    def _enqueue(self, job) -> bool:
        if self._queue is None or not self._worker_tasks:
            self._counters["dropped"] += 1
            logger.warning("Plugin dispatcher is not running, dropping %s for table %s", job.trigger, job.table_id)
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._counters["dropped"] += 1
            logger.warning(
                "Plugin dispatch queue full (%d), dropping %s job for table %s",
                self.queue_size,
                job.trigger,
                job.table_id,
            )
            return False
        self._counters["accepted"] += 1
        return True

    async def _worker(self, idx: int):
        logger.debug("Dispatch worker %d started", idx)
        while True:
            job = await self._queue.get()
            try:
                if isinstance(job, TableTriggerJob):
                    await self._fan_out(job)
                else:
                    await self._run_plugin_job(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._counters["failed"] += 1
                logger.exception("Dispatch worker %d failed on %s job for table %s", idx, job.trigger, job.table_id)
            finally:
                self._queue.task_done()

    async def _fan_out(self, job: TableTriggerJob):
        plugin_ids = await asyncio.to_thread(self.bindings.lookup, job.table_id, job.trigger)
        if not plugin_ids:
            logger.debug("No plugins bound to table %s for %s", job.table_id, job.trigger)
            return
        for plugin_id in plugin_ids:
            self._enqueue(
                PluginJob(
                    plugin_id=plugin_id,
                    table_id=job.table_id,
                    trigger=job.trigger,
                    record_id=job.record_id,
                    actor_id=job.actor_id,
                    payload=copy.deepcopy(job.payload),
                )
            )

    async def _run_plugin_job(self, job: PluginJob):
        try:
            plugin = await asyncio.to_thread(self.plugins.get_plugin, job.plugin_id)
        except PluginNotFoundError:
            self._counters["failed"] += 1
            logger.warning("Bound plugin %s no longer exists, skipping %s on table %s", job.plugin_id, job.trigger, job.table_id)
            return

        slot = self._plugin_slots.get(plugin.id)
        if slot is None:
            slot = self._plugin_slots[plugin.id] = asyncio.Semaphore(self.per_plugin_limit)
        # jobs running or waiting per plugin; the semaphore goes away with the last one
        self._slot_users[plugin.id] = self._slot_users.get(plugin.id, 0) + 1
        try:
            async with slot:
                execution = await self.runner.execute(
                    plugin,
                    job.table_id,
                    job.record_id,
                    job.trigger,
                    job.payload,
                    job.actor_id,
                )
        finally:
            self._slot_users[plugin.id] -= 1
            if not self._slot_users[plugin.id]:
                del self._slot_users[plugin.id]
                self._plugin_slots.pop(plugin.id, None)
        self._counters["executed"] += 1
        if execution.status != "success":
            logger.warning(
                "Triggered plugin %s finished with status %s (execution %s)",
                plugin.id,
                execution.status,
                execution.id,
            )

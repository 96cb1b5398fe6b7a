# cornerstone_core/core/runtime.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
import logging
from pathlib import Path

from .dispatcher import PluginDispatcher
from .events import EventBus
from .plugin_api import LIFECYCLE_TRIGGERS
from .plugin_runner import ExecutionRunner, ProcessSpawner
from ..db import init_schema
from ..services.binding_service import BindingRegistry
from ..services.catalog_service import CatalogService
from ..services.execution_ledger import ExecutionLedger
from ..services.plugin_service import PluginService
from ..services.record_service import RecordService
from ..services.settings_service import SettingsService
from ..utils.config import Settings, load_yaml_config, settings as default_settings

logger = logging.getLogger("cornerstone_core.runtime")


class CornerstoneRuntime:
    def __init__(self, settings: Settings = None, config_path: str = "serviceconfig.yaml"):
        self.settings = settings or default_settings
        self.event_bus = EventBus(logger=logging.getLogger("cornerstone_core.events"))

        self._started = False

        # Load service configuration (dispatch pool sizing)
        self.config_path = self._resolve_config_path(config_path)
        self.service_config = {}
        if self.config_path.exists():
            self.service_config = load_yaml_config(self.config_path)
            logger.info(f"Loaded service config from {self.config_path}")
        else:
            logger.warning(f"Service config not found at {self.config_path}, using defaults")
        dispatch_cfg = self.service_config.get("dispatch", {}) or {}

        self.host = self.settings.SERVER_HOST
        self.port = self.settings.SERVER_PORT
        self.debug = self.settings.DEBUG
        self.db_path = self.settings.DATABASE_PATH

        self.catalog = CatalogService(self.db_path)
        self.plugins = PluginService(self.db_path)
        self.bindings = BindingRegistry(self.db_path)
        self.ledger = ExecutionLedger(self.db_path)
        self.settings_service = SettingsService(
            self.db_path,
            default_timeout=self.settings.PLUGIN_TIMEOUT,
            default_work_dir=self.settings.PLUGIN_WORK_DIR,
        )
        self.records = RecordService(self.db_path, event_bus=self.event_bus)
        self.runner = ExecutionRunner(
            self.ledger,
            self.settings_service,
            spawner=ProcessSpawner(),
            event_bus=self.event_bus,
        )
        self.dispatcher = PluginDispatcher(
            self.bindings,
            self.plugins,
            self.runner,
            workers=dispatch_cfg.get("workers", 4),
            queue_size=dispatch_cfg.get("queue_size", 1000),
            per_plugin_limit=dispatch_cfg.get("per_plugin_limit", 2),
        )

    @staticmethod
    def _resolve_config_path(config_path: str) -> Path:
        candidate = Path(config_path)
        if candidate.is_absolute():
            return candidate

        cwd_candidate = Path.cwd() / candidate
        if cwd_candidate.exists():
            return cwd_candidate

        return Path(__file__).resolve().parents[1] / candidate

    async def init(self):
        """Creates the schema and wires record events to the dispatcher."""
        logger.info(f"Runtime init: preparing database at {self.db_path}")
        await asyncio.to_thread(init_schema, self.db_path)

        for trigger in LIFECYCLE_TRIGGERS:
            self.event_bus.subscribe(f"record.{trigger}", self.dispatcher.on_record_mutation)
        logger.info("Runtime init complete")

    async def start(self):
        """Starts the dispatch workers and announces startup."""
        if self._started:
            return
        self._started = True

        self.dispatcher.start()
        await self.event_bus.emit("system.startup", {"msg": "Cornerstone runtime started"})
        logger.info(f"Cornerstone Core running on http://{self.host}:{self.port} (debug={self.debug})")

    async def shutdown(self, drain_timeout: float = 5.0):
        """Stops the dispatcher; executions still in flight are cancelled."""
        if not self._started:
            return
        logger.info("Emitting system.shutdown event")
        await self.event_bus.emit("system.shutdown", {"msg": "Cornerstone runtime shutting down"})

        try:
            await self.dispatcher.stop(drain_timeout=drain_timeout)
        except Exception:
            logger.exception("Plugin dispatcher shutdown failed")

        self.event_bus.clear()
        self._started = False
        logger.info("Runtime shutdown complete")

# cornerstone_core/core/events.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Tuple, Union

# sync or async callable that accepts the event payload
Listener = Callable[[Any], Union[Awaitable[None], None]]


class EventBus:
    """In-process publish/subscribe used between services.

    Published names: ``system.startup``, ``system.shutdown``,
    ``record.create``, ``record.update``, ``record.delete`` and
    ``plugin.execution.finished``. A failing listener is logged and never
    affects the emitter or the other listeners.
    """

    def __init__(self, logger: logging.Logger = None):
        # event name -> [(listener, once)]
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {}
        self._logger = logger or logging.getLogger("cornerstone_core.events")

    def subscribe(self, event_name: str, listener: Listener, *, once: bool = False):
        self._listeners.setdefault(event_name, []).append((listener, once))
        self._logger.debug("Listener subscribed to %s (once=%s)", event_name, once)

    def unsubscribe(self, event_name: str, listener: Listener):
        current = self._listeners.get(event_name)
        if not current:
            return
        self._listeners[event_name] = [(l, o) for (l, o) in current if l != listener]
        self._logger.debug("Listener unsubscribed from %s (%d -> %d)", event_name, len(current), len(self._listeners[event_name]))

    async def emit(self, event_name: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every listener of ``event_name``; returns how many were called."""
        listeners = list(self._listeners.get(event_name, []))
        if not listeners:
            self._logger.debug("No listeners for event: %s", event_name)
            return 0

        for listener, once in listeners:
            if once:
                self.unsubscribe(event_name, listener)

        async def _call(listener: Listener):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._logger.exception("Error in listener for %s", event_name)

        await asyncio.gather(*(_call(listener) for listener, _ in listeners))
        return len(listeners)

    def clear(self, event_name: str = None):
        if event_name is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_name, None)

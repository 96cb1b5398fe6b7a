# cornerstone_core/core/context.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..utils.config import settings


@dataclass
class CornerstoneContext:
    config: Any
    logger: Any
    event_bus: Optional[object] = None
    runtime: Optional[object] = None
    dispatcher: Optional[object] = None


context = CornerstoneContext(
    config=settings,
    logger=logging.getLogger("cornerstone_core"),
)

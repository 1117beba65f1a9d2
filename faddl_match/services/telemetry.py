"""
Faddl Match — Telemetry Sink

Components report alerts and state transitions through a ``TelemetrySink``
rather than writing to a concrete channel.  The default sink forwards events
to structlog on a dedicated logger; deployments can plug in anything that
implements ``emit``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog


class TelemetrySink(ABC):
    """Destination for structured operational events."""

    @abstractmethod
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Record *event* with its *payload*.  Must not raise."""


class StructlogTelemetrySink(TelemetrySink):
    """Emit events as structlog records, levelled by ``payload["severity"]``."""

    _LEVELS = {
        "info": "info",
        "warning": "warning",
        "critical": "error",
        "error": "error",
    }

    def __init__(self, logger_name: str = "faddl_match.telemetry") -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        level = self._LEVELS.get(str(payload.get("severity", "info")), "info")
        getattr(self._logger, level)(event, **payload)

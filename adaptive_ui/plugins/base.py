"""
Base plugin interface.

Every action provider is an AdaptiveUiPlugin: it is started with the app,
stopped on shutdown and reports its health through /healthz.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

HEALTH_STATUSES = ("healthy", "degraded", "unhealthy")


class AdaptiveUiPlugin(ABC):
    """
    Args:
        name: Unique plugin name; also the `provider` recorded on catalogued actions
        config: Plugin-specific settings
    """

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None):
        self.name = name
        self.config = config or {}
        self._started = False
        self._logger = logging.getLogger(f"adui.plugin.{name}")

    @abstractmethod
    def start(self) -> None:
        """Acquire resources. Must be idempotent; raising aborts app startup."""

    @abstractmethod
    def stop(self) -> None:
        """Release resources. Must be idempotent."""

    @abstractmethod
    def health(self) -> Dict[str, Any]:
        """
        Returns:
            {"status": one of HEALTH_STATUSES, "message": str, "details": dict}
        """

    def _mark_started(self) -> None:
        self._started = True
        self._logger.info(f"Plugin {self.name} started")

    def _mark_stopped(self) -> None:
        self._started = False
        self._logger.info(f"Plugin {self.name} stopped")

    @property
    def is_started(self) -> bool:
        return self._started

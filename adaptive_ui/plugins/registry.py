"""
Plugin registry.

Holds plugin instances in registration order, drives their lifecycle and
aggregates their health for /healthz.
"""

import logging
from typing import Any, Dict, List, Type, TypeVar

from adaptive_ui.plugins.base import HEALTH_STATUSES, AdaptiveUiPlugin

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=AdaptiveUiPlugin)

_SEVERITY = {status: rank for rank, status in enumerate(HEALTH_STATUSES)}


class PluginRegistry:
    """
    Registration order matters: the action catalog consults providers in
    that order, start_all() follows it and stop_all() reverses it.

    A plugin added while the registry is running is started immediately.
    """

    def __init__(self):
        self._plugins: Dict[str, AdaptiveUiPlugin] = {}
        self._running = False

    def add_plugin(self, plugin: AdaptiveUiPlugin) -> None:
        """
        Raises:
            ValueError: If a plugin with the same name is registered
        """
        if plugin.name in self._plugins:
            raise ValueError(f"Plugin '{plugin.name}' already registered")
        if self._running and not plugin.is_started:
            logger.info(f"Starting late plugin: {plugin.name}")
            plugin.start()
        self._plugins[plugin.name] = plugin
        logger.info(f"Registered plugin: {plugin.name}")

    def get_plugins_by_type(self, plugin_type: Type[P]) -> List[P]:
        return [p for p in self._plugins.values() if isinstance(p, plugin_type)]

    def start_all(self) -> None:
        """
        Start every plugin that is not running yet.

        On failure the plugins started so far are stopped again and the
        exception propagates.
        """
        logger.info(f"Starting {len(self._plugins)} plugins...")
        started: List[AdaptiveUiPlugin] = []
        for name, plugin in self._plugins.items():
            if plugin.is_started:
                continue
            try:
                plugin.start()
            except Exception as e:
                logger.error(f"Failed to start plugin '{name}': {e}")
                self._rollback(started)
                raise
            started.append(plugin)
        self._running = True

    def stop_all(self) -> None:
        """Stop in reverse order; a failing plugin does not block the others."""
        self._running = False
        for name, plugin in reversed(list(self._plugins.items())):
            if not plugin.is_started:
                continue
            try:
                plugin.stop()
            except Exception as e:
                logger.error(f"Error stopping plugin '{name}': {e}")

    @staticmethod
    def _rollback(started: List[AdaptiveUiPlugin]) -> None:
        for plugin in reversed(started):
            try:
                logger.warning(f"Rollback: stopping plugin {plugin.name}")
                plugin.stop()
            except Exception as e:
                logger.error(f"Error during rollback of '{plugin.name}': {e}")

    def health_all(self) -> Dict[str, Any]:
        """
        Aggregate health status from all plugins (worst status wins).

        Returns:
            {"status": "healthy" | "degraded" | "unhealthy", "plugins": {name: health}}
        """
        plugins: Dict[str, Any] = {}
        overall = "healthy"
        for name, plugin in self._plugins.items():
            try:
                health = plugin.health()
            except Exception as e:
                logger.error(f"Health check failed for '{name}': {e}")
                health = {"status": "unhealthy", "message": f"Health check error: {e}", "details": {}}
            plugins[name] = health
            status = health.get("status", "unhealthy")
            if _SEVERITY.get(status, 2) > _SEVERITY[overall]:
                overall = status if status in _SEVERITY else "unhealthy"
        return {"status": overall, "plugins": plugins}

    @property
    def plugin_names(self) -> List[str]:
        return list(self._plugins)

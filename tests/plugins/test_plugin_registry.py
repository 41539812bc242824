"""
Tests for the plugin foundation.

Covers the plugin lifecycle, the registry and aggregated health.
"""

import pytest
from typing import Dict, Any, List

from adaptive_ui.plugins.action_provider import ActionProvider
from adaptive_ui.plugins.base import AdaptiveUiPlugin
from adaptive_ui.plugins.registry import PluginRegistry


class DummyPlugin(AdaptiveUiPlugin):
    """Plain plugin that records lifecycle calls."""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.start_called = False
        self.stop_called = False

    def start(self) -> None:
        self.start_called = True
        self._mark_started()

    def stop(self) -> None:
        self.stop_called = True
        self._mark_stopped()

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "message": "Dummy plugin is fine",
            "details": {"start_called": self.start_called}
        }


class FailingPlugin(DummyPlugin):
    def start(self) -> None:
        raise RuntimeError("boom")


class DegradedPlugin(DummyPlugin):
    def health(self) -> Dict[str, Any]:
        return {"status": "degraded", "message": "slow", "details": {}}


class BrokenHealthPlugin(DummyPlugin):
    def health(self) -> Dict[str, Any]:
        raise RuntimeError("kaput")


class StaticActionProvider(ActionProvider):
    """Provider returning the actions listed in its config."""

    def discover_actions(self, context: Dict[str, Any]) -> List[Dict[str, Any]]:
        return list(self.config.get("actions", []))


class TestPluginBase:
    def test_plugin_creation(self) -> None:
        plugin = DummyPlugin("test", {"foo": "bar"})
        assert plugin.name == "test"
        assert plugin.config == {"foo": "bar"}
        assert not plugin.is_started

    def test_plugin_lifecycle(self) -> None:
        plugin = DummyPlugin("test", {})

        plugin.start()
        assert plugin.start_called
        assert plugin.is_started

        plugin.stop()
        assert plugin.stop_called
        assert not plugin.is_started


class TestActionProvider:
    def test_supports_requires_thing_description(self) -> None:
        provider = StaticActionProvider("static", {})
        assert provider.supports({"thingDescription": {"id": "t"}})
        assert not provider.supports({"thingId": "t"})

    def test_health_follows_lifecycle(self) -> None:
        provider = StaticActionProvider("static", {})
        assert provider.health()["status"] == "degraded"

        provider.start()
        assert provider.health()["status"] == "healthy"


class TestPluginRegistry:
    def test_empty_registry_is_healthy(self) -> None:
        registry = PluginRegistry()
        assert registry.plugin_names == []
        assert registry.health_all() == {"status": "healthy", "plugins": {}}

    def test_add_plugin_rejects_duplicate_names(self) -> None:
        registry = PluginRegistry()
        registry.add_plugin(DummyPlugin("dup", {}))

        with pytest.raises(ValueError, match="already registered"):
            registry.add_plugin(DummyPlugin("dup", {}))

    def test_get_plugins_by_type_keeps_registration_order(self) -> None:
        registry = PluginRegistry()
        registry.add_plugin(StaticActionProvider("second-provider", {}))
        registry.add_plugin(DummyPlugin("dummy", {}))
        registry.add_plugin(StaticActionProvider("first-provider", {}))

        providers = registry.get_plugins_by_type(ActionProvider)

        assert [p.name for p in providers] == ["second-provider", "first-provider"]
        assert len(registry.get_plugins_by_type(AdaptiveUiPlugin)) == 3

    def test_start_and_stop_all(self) -> None:
        registry = PluginRegistry()
        plugin1 = DummyPlugin("dummy1", {})
        plugin2 = DummyPlugin("dummy2", {})
        registry.add_plugin(plugin1)
        registry.add_plugin(plugin2)

        registry.start_all()
        assert plugin1.is_started and plugin2.is_started

        registry.stop_all()
        assert not plugin1.is_started and not plugin2.is_started
        assert plugin1.stop_called and plugin2.stop_called

    def test_plugin_added_after_start_is_started(self) -> None:
        registry = PluginRegistry()
        registry.start_all()

        late = StaticActionProvider("late", {})
        registry.add_plugin(late)

        assert late.is_started
        assert registry.health_all()["status"] == "healthy"

    def test_start_all_rolls_back_on_failure(self) -> None:
        registry = PluginRegistry()
        first = DummyPlugin("first", {})
        registry.add_plugin(first)
        registry.add_plugin(FailingPlugin("second", {}))

        with pytest.raises(RuntimeError, match="boom"):
            registry.start_all()

        assert first.start_called
        assert not first.is_started

        late = DummyPlugin("late", {})
        registry.add_plugin(late)
        assert not late.is_started

    def test_health_all_worst_status_wins(self) -> None:
        registry = PluginRegistry()
        registry.add_plugin(DummyPlugin("ok", {}))
        registry.add_plugin(DegradedPlugin("slow", {}))

        health = registry.health_all()

        assert health["status"] == "degraded"
        assert health["plugins"]["ok"]["status"] == "healthy"
        assert health["plugins"]["slow"]["status"] == "degraded"

    def test_health_check_error_is_unhealthy(self) -> None:
        registry = PluginRegistry()
        registry.add_plugin(DegradedPlugin("slow", {}))
        registry.add_plugin(BrokenHealthPlugin("broken", {}))

        health = registry.health_all()

        assert health["status"] == "unhealthy"
        assert "kaput" in health["plugins"]["broken"]["message"]

"""
Plugin System

Lifecycle-managed plugins; action providers discover invocable Thing actions.
"""

from adaptive_ui.plugins.base import AdaptiveUiPlugin
from adaptive_ui.plugins.action_provider import ActionProvider
from adaptive_ui.plugins.registry import PluginRegistry

__all__ = [
    "AdaptiveUiPlugin",
    "ActionProvider",
    "PluginRegistry",
]

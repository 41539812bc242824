"""
Action Provider interface.

Action Providers turn a Thing context into raw action descriptors. The
ActionCatalog normalizes whatever they return.
"""

from abc import abstractmethod
from typing import Any, Dict, List

from adaptive_ui.plugins.base import AdaptiveUiPlugin


class ActionProvider(AdaptiveUiPlugin):
    """
    Base class for action discovery providers.

    Action Providers:
    - Receive a context {"thingId", "thingDescription", "metadata"}
    - Return raw descriptors; ids, forms and transport may be partial
    - MUST NOT call the LLM or the network; discovery is synchronous
    """

    def supports(self, context: Dict[str, Any]) -> bool:
        """
        Whether this provider can discover actions for the context.

        Default implementation: any context that carries a Thing Description.
        """
        return bool(context.get("thingDescription"))

    @abstractmethod
    def discover_actions(self, context: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Discover raw action descriptors for a Thing.

        Args:
            context: {"thingId": str | None, "thingDescription": dict, "metadata": dict}

        Returns:
            List of raw descriptor dicts (may be empty)
        """
        pass

    def start(self) -> None:
        self._mark_started()

    def stop(self) -> None:
        self._mark_stopped()

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.is_started else "degraded",
            "message": "running" if self.is_started else "not started",
            "details": {},
        }

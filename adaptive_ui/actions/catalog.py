"""
Action Catalog - pluggable discovery and normalization of Thing actions.

Discovery is delegated to ActionProvider plugins; the catalog normalizes
their output, memoizes it per thing id and keeps an id index.
"""

import copy
import logging
import re
from typing import Any, Dict, List, Optional

from adaptive_ui.actions.models import ActionDescriptor
from adaptive_ui.plugins.action_provider import ActionProvider
from adaptive_ui.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: Any) -> str:
    if not isinstance(value, str) or not value:
        return "action"
    return _NON_SLUG.sub("-", value.lower().strip()).strip("-") or "action"


def build_action_id(thing_id: Optional[str], descriptor: Dict[str, Any], index: int = 0) -> str:
    label = (
        descriptor.get("name")
        or descriptor.get("actionName")
        or descriptor.get("title")
        or f"action-{index}"
    )
    return f"{thing_id or descriptor.get('thingId') or 'thing'}::{slugify(label)}"


def _clone_forms(forms: Any) -> List[Dict[str, Any]]:
    if not isinstance(forms, list):
        return []
    cloned = []
    for index, form in enumerate(f for f in forms if isinstance(f, dict)):
        entry = copy.deepcopy(form)
        entry.setdefault("id", f"form-{index}")
        op = entry.get("op")
        entry["op"] = list(op) if isinstance(op, list) else ([] if op is None else [op])
        cloned.append(entry)
    return cloned


def normalize_descriptor(
    descriptor: Dict[str, Any],
    context: Dict[str, Any],
    provider_name: str,
    index: int = 0,
) -> ActionDescriptor:
    """
    Normalize a raw provider descriptor.

    Never drops a descriptor: missing names fall back to the id, and a
    descriptor without forms keeps transport=None.
    """
    td = context.get("thingDescription") or {}
    thing_id = descriptor.get("thingId") or context.get("thingId") or td.get("id")
    forms = _clone_forms(descriptor.get("forms"))
    transport = descriptor.get("transport") or (forms[0] if forms else None)

    action_id = descriptor.get("id") or descriptor.get("actionId") or build_action_id(thing_id, descriptor, index)
    name = descriptor.get("name") or descriptor.get("actionName") or descriptor.get("title") or action_id
    title = descriptor.get("title") or name

    return ActionDescriptor(
        id=action_id,
        thing_id=thing_id,
        name=name,
        title=title,
        description=descriptor.get("description") or "",
        type=descriptor.get("type") or "action",
        capability=descriptor.get("capability") or descriptor.get("capabilityAlias"),
        input=descriptor.get("input"),
        output=descriptor.get("output"),
        transport=copy.deepcopy(transport) if isinstance(transport, dict) else None,
        forms=forms,
        metadata=copy.deepcopy(descriptor.get("metadata") or {}),
        annotations=copy.deepcopy(descriptor.get("annotations") or {}),
        source=descriptor.get("source") or "plugin",
        provider=provider_name,
        security=copy.deepcopy(descriptor.get("security")),
    )


class ActionCatalog:
    """
    Per-thing action sets plus a global id index.

    ensure_thing_actions() is memoized per thing id; refresh_thing_actions()
    rediscovers and replaces the whole set for that thing.
    """

    def __init__(self, plugins: Optional[PluginRegistry] = None):
        self.plugins = plugins or PluginRegistry()
        self._by_thing: Dict[str, List[ActionDescriptor]] = {}
        self._by_id: Dict[str, ActionDescriptor] = {}

    def register_provider(self, provider: ActionProvider) -> None:
        """
        Register an action provider.

        Raises:
            TypeError: If the provider does not implement discover_actions()
        """
        if not isinstance(provider, ActionProvider) or not callable(getattr(provider, "discover_actions", None)):
            raise TypeError("Action provider must implement discover_actions(context).")
        self.plugins.add_plugin(provider)

    def list_providers(self) -> List[str]:
        return [p.name for p in self.plugins.get_plugins_by_type(ActionProvider)]

    def health_all(self) -> Dict[str, Any]:
        return self.plugins.health_all()

    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_thing_id(thing_id: Optional[str], thing_description: Optional[Dict[str, Any]]) -> Optional[str]:
        if thing_id:
            return thing_id
        if isinstance(thing_description, dict):
            return thing_description.get("id")
        return None

    def _discover(self, context: Dict[str, Any]) -> List[ActionDescriptor]:
        if not context.get("thingDescription"):
            return []

        aggregated: List[ActionDescriptor] = []
        for provider in self.plugins.get_plugins_by_type(ActionProvider):
            if not provider.supports(context):
                continue
            try:
                discovered = provider.discover_actions(context) or []
            except Exception as e:
                logger.error(f"Action provider '{provider.name}' failed: {e}")
                continue
            for index, raw in enumerate(discovered):
                if isinstance(raw, dict):
                    aggregated.append(normalize_descriptor(raw, context, provider.name, index))
        return self._dedupe_ids(context.get("thingId"), aggregated)

    def _dedupe_ids(self, thing_id: Optional[str], actions: List[ActionDescriptor]) -> List[ActionDescriptor]:
        # Ids owned by other things, or repeated within this set, get a suffix.
        seen: set = set()

        def taken(candidate: str) -> bool:
            if candidate in seen:
                return True
            owner = self._by_id.get(candidate)
            return owner is not None and owner.thing_id != thing_id

        for action in actions:
            candidate = action.id
            suffix = 2
            while taken(candidate):
                candidate = f"{action.id}-{suffix}"
                suffix += 1
            if candidate != action.id:
                logger.warning(f"Duplicate action id '{action.id}' renamed to '{candidate}'")
                action.id = candidate
            seen.add(candidate)
        return actions

    def _save(self, thing_id: str, actions: List[ActionDescriptor]) -> None:
        for previous in self._by_thing.get(thing_id, []):
            self._by_id.pop(previous.id, None)
        self._by_thing[thing_id] = actions
        for action in actions:
            self._by_id[action.id] = action

    def ensure_thing_actions(
        self,
        thing_id: Optional[str] = None,
        thing_description: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[ActionDescriptor]:
        resolved = self._resolve_thing_id(thing_id, thing_description)
        if resolved and resolved in self._by_thing:
            return self._by_thing[resolved]
        return self.refresh_thing_actions(resolved, thing_description, metadata)

    def refresh_thing_actions(
        self,
        thing_id: Optional[str] = None,
        thing_description: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[ActionDescriptor]:
        resolved = self._resolve_thing_id(thing_id, thing_description)
        context = {
            "thingId": resolved,
            "thingDescription": thing_description,
            "metadata": metadata or {},
        }
        actions = self._discover(context)
        if resolved and thing_description:
            self._save(resolved, actions)
            logger.info(f"Catalogued {len(actions)} actions for thing '{resolved}'")
        return actions

    def get_actions_for_thing(self, thing_id: Optional[str]) -> List[ActionDescriptor]:
        if not thing_id:
            return []
        return list(self._by_thing.get(thing_id, []))

    def get_action_by_id(self, action_id: Optional[str]) -> Optional[ActionDescriptor]:
        if not action_id:
            return None
        return self._by_id.get(action_id)

    def snapshot(self) -> List[ActionDescriptor]:
        return list(self._by_id.values())

    @property
    def action_count(self) -> int:
        return len(self._by_id)

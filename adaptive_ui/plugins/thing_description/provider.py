"""
WoT Thing Description → action descriptor discovery.

Turns the `actions` section of a W3C Thing Description into raw action
descriptors with absolute form URLs and inferred HTTP methods.
"""

import re
from typing import Any, Dict, List, Optional

from adaptive_ui.plugins.action_provider import ActionProvider

_ABSOLUTE_URL = re.compile(r"^https?:", re.IGNORECASE)


def _arrayify(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value is None or value == "":
        return []
    return [value]


class ThingDescriptionActionProvider(ActionProvider):
    """
    Built-in provider for WoT Thing Descriptions.

    Action ids are "<thingId>::<actionName>" unless the action definition
    carries its own id.
    """

    DEFAULT_NAME = "thing-description-action-provider"

    # WoT operation verb → HTTP method, checked in this order
    OP_METHODS = (
        (("readproperty", "readallproperties"), "GET"),
        (("writeproperty", "writeallproperties"), "PUT"),
        (("invokeaction",), "POST"),
    )

    def __init__(self, name: str = DEFAULT_NAME, config: Optional[Dict[str, Any]] = None):
        super().__init__(name, config)

    def supports(self, context: Dict[str, Any]) -> bool:
        td = context.get("thingDescription")
        return isinstance(td, dict) and bool(td.get("actions"))

    def discover_actions(self, context: Dict[str, Any]) -> List[Dict[str, Any]]:
        td = context.get("thingDescription") or {}
        actions = td.get("actions")
        if not isinstance(actions, dict):
            return []

        return [
            self.build_descriptor(context, action_name, definition or {})
            for action_name, definition in actions.items()
        ]

    @classmethod
    def resolve_base_url(cls, td: Dict[str, Any]) -> str:
        for key in ("base", "baseUrl"):
            value = td.get(key)
            if isinstance(value, str) and value:
                return value[:-1] if value.endswith("/") else value
        return ""

    @classmethod
    def resolve_absolute_url(cls, base_url: str, href: str) -> str:
        if not href:
            return base_url
        if _ABSOLUTE_URL.match(href) or not base_url:
            return href
        if href.startswith("/"):
            return f"{base_url}{href}"
        return f"{base_url}/{href}"

    @classmethod
    def infer_method_from_ops(cls, ops: Any) -> Optional[str]:
        op_list = [op.lower() if isinstance(op, str) else op for op in _arrayify(ops)]
        for verbs, method in cls.OP_METHODS:
            if any(verb in op_list for verb in verbs):
                return method
        return None

    @classmethod
    def normalize_forms(
        cls,
        forms: Any,
        base_url: str,
        default_method: str = "POST",
        default_content_type: str = "application/json",
    ) -> List[Dict[str, Any]]:
        normalized = []
        for index, form in enumerate(f for f in _arrayify(forms) if f):
            if not isinstance(form, dict):
                continue
            method = form.get("method") or cls.infer_method_from_ops(form.get("op")) or default_method
            href = form.get("href") or form.get("uri") or form.get("url") or ""
            entry = {
                "id": form.get("id") or f"form-{index}",
                "href": href,
                "url": cls.resolve_absolute_url(base_url, href),
                "method": str(method).upper(),
                "contentType": form.get("contentType") or default_content_type,
                "op": _arrayify(form.get("op")),
            }
            for optional in ("security", "subprotocol", "headers"):
                if form.get(optional) is not None:
                    entry[optional] = form[optional]
            if isinstance(form.get("metadata"), dict):
                entry["metadata"] = dict(form["metadata"])
            normalized.append(entry)
        return normalized

    @classmethod
    def build_descriptor(
        cls,
        context: Dict[str, Any],
        action_name: str,
        definition: Dict[str, Any],
    ) -> Dict[str, Any]:
        td = context.get("thingDescription") or {}
        thing_id = context.get("thingId") or td.get("id")
        base_url = cls.resolve_base_url(td)
        forms = cls.normalize_forms(
            definition.get("forms"),
            base_url,
            default_content_type=definition.get("contentType") or "application/json",
        )

        metadata: Dict[str, Any] = {"base": base_url, "thingTitle": td.get("title")}
        if isinstance(definition.get("metadata"), dict):
            metadata.update(definition["metadata"])

        op_annotations: List[Any] = []
        for form in forms:
            op_annotations.extend(form.get("op") or [])

        return {
            "id": definition.get("id") or f"{thing_id or 'thing'}::{action_name}",
            "name": action_name,
            "title": definition.get("title") or action_name,
            "description": definition.get("description") or "",
            "capability": definition.get("@type") or metadata.get("capability"),
            "input": definition.get("input"),
            "output": definition.get("output"),
            "annotations": {"op": op_annotations},
            "transport": forms[0] if forms else None,
            "forms": forms,
            "security": td.get("security"),
            "metadata": metadata,
            "source": "thing-description",
            "thingId": thing_id,
        }

"""
Normalized action descriptor.

This is the transport-resolved, provider-independent form of an invocable
Thing action. Devices execute actions from the wire shape produced by
to_wire().
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ActionDescriptor:
    id: str  # "<thingId>::<name>", unique across the catalog
    thing_id: Optional[str]
    name: str
    title: str
    description: str = ""
    type: str = "action"
    capability: Optional[str] = None
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    transport: Optional[Dict[str, Any]] = None  # None when no form resolves
    forms: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    annotations: Dict[str, Any] = field(default_factory=dict)
    source: str = "plugin"
    provider: str = "action-provider"
    security: Any = None

    @property
    def intent_aliases(self) -> List[str]:
        aliases = self.metadata.get("intentAliases") or []
        return [a for a in aliases if isinstance(a, str)]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "thingId": self.thing_id,
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "capability": self.capability,
            "input": self.input,
            "output": self.output,
            "metadata": copy.deepcopy(self.metadata),
            "annotations": copy.deepcopy(self.annotations),
            "source": self.source,
            "provider": self.provider,
            "transport": copy.deepcopy(self.transport),
            "forms": copy.deepcopy(self.forms),
        }
        if self.security is not None:
            data["security"] = copy.deepcopy(self.security)
        return data

    def to_wire(self) -> Dict[str, Any]:
        """Shape attached to UI components and consumed by devices."""
        return {
            "type": "thingAction",
            "id": self.id,
            "thingId": self.thing_id,
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "metadata": copy.deepcopy(self.metadata),
            "transport": copy.deepcopy(self.transport),
            "forms": copy.deepcopy(self.forms),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionDescriptor":
        return cls(
            id=data["id"],
            thing_id=data.get("thingId"),
            name=data.get("name") or data["id"],
            title=data.get("title") or data.get("name") or data["id"],
            description=data.get("description") or "",
            type=data.get("type") or "action",
            capability=data.get("capability"),
            input=data.get("input"),
            output=data.get("output"),
            transport=data.get("transport"),
            forms=list(data.get("forms") or []),
            metadata=dict(data.get("metadata") or {}),
            annotations=dict(data.get("annotations") or {}),
            source=data.get("source") or "plugin",
            provider=data.get("provider") or "action-provider",
            security=data.get("security"),
        )

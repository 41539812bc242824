"""
Data models for the registry.

Records are stored as dataclasses and exposed on the wire through to_dict(),
which uses the camelCase keys devices and capability services send.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


SERVICE_TYPES = ("generic", "capability", "device")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return url
    return url[:-1] if url.endswith("/") else url


def compose_url(base: str, path: Optional[str] = "/") -> str:
    """Join a base URL and an endpoint path; '' and '/' return the base unchanged."""
    if not path or path == "/":
        return base
    return f"{base}{path if path.startswith('/') else '/' + path}"


@dataclass
class ServiceRecord:
    """
    A registered service.

    Capability services additionally carry `provides` (alias list),
    `endpoints` and LLM-callable `tools`.
    """

    name: str
    url: str
    type: str = "generic"
    capabilities: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    provides: List[str] = field(default_factory=list)
    endpoints: Dict[str, Any] = field(default_factory=dict)
    tools: Dict[str, Any] = field(default_factory=dict)
    registered_at: str = field(default_factory=now_iso)
    last_heartbeat: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "capabilities": list(self.capabilities),
            "metadata": self.metadata,
            "registeredAt": self.registered_at,
            "lastHeartbeat": self.last_heartbeat,
        }
        if self.type == "capability":
            data["provides"] = list(self.provides)
            data["endpoints"] = self.endpoints
            if self.tools:
                data["tools"] = self.tools
        return data


@dataclass
class DeviceRecord:
    """A rendering device (tablet, voice speaker, watch...)."""

    id: str
    name: str
    url: Optional[str] = None
    thing_id: Optional[str] = None
    thing_description: Optional[Dict[str, Any]] = None
    capabilities: List[str] = field(default_factory=list)
    ui_schema: Optional[Dict[str, Any]] = None
    default_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    registered_at: str = field(default_factory=now_iso)
    last_heartbeat: str = field(default_factory=now_iso)

    @property
    def associated_thing_id(self) -> Optional[str]:
        if self.thing_id:
            return self.thing_id
        if isinstance(self.thing_description, dict):
            return self.thing_description.get("id")
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "thingId": self.thing_id,
            "thingDescription": self.thing_description,
            "capabilities": list(self.capabilities),
            "uiSchema": self.ui_schema,
            "defaultPrompt": self.default_prompt,
            "metadata": self.metadata,
            "registeredAt": self.registered_at,
            "lastHeartbeat": self.last_heartbeat,
        }


@dataclass
class ThingRecord:
    """A Web-of-Things Thing and its Thing Description document."""

    id: str
    description: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    registered_at: str = field(default_factory=now_iso)
    last_heartbeat: str = field(default_factory=now_iso)
    actions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def title(self) -> str:
        if isinstance(self.description, dict) and self.description.get("title"):
            return self.description["title"]
        return self.metadata.get("deviceType") or self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "metadata": self.metadata,
            "registeredAt": self.registered_at,
            "lastHeartbeat": self.last_heartbeat,
            "actions": self.actions,
        }

"""
In-memory registry of services, capabilities, devices and Things.

One RegistryStore per application; tests construct their own. Writes
validate identity fields before touching any table, so a rejected record
leaves the store unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from adaptive_ui.errors import ValidationError
from adaptive_ui.registry.events import (
    DeviceRegistered,
    RegistryEvents,
    ServiceRegistered,
    ThingRegistered,
)
from adaptive_ui.registry.models import (
    SERVICE_TYPES,
    DeviceRecord,
    ServiceRecord,
    ThingRecord,
    compose_url,
    normalize_url,
    now_iso,
)

if TYPE_CHECKING:
    from adaptive_ui.actions.catalog import ActionCatalog

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


class RegistryStore:
    """
    Directory of everything that registered with the service.

    Tables:
    - services by type ("generic", "capability", "device"), keyed by name
    - capability alias index: alias -> capability service name
    - devices and things keyed by id, in registration order
    """

    def __init__(
        self,
        catalog: Optional["ActionCatalog"] = None,
        events: Optional[RegistryEvents] = None,
    ):
        self.catalog = catalog
        self.events = events or RegistryEvents()
        self._services: Dict[str, Dict[str, ServiceRecord]] = {t: {} for t in SERVICE_TYPES}
        self._aliases: Dict[str, str] = {}
        self._devices: Dict[str, DeviceRecord] = {}
        self._things: Dict[str, ThingRecord] = {}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register_service(self, payload: Mapping[str, Any]) -> ServiceRecord:
        """
        Register or merge a service record.

        Re-registration under the same name keeps prior metadata,
        capabilities, provides, endpoints and tools when the new payload
        leaves them empty, and keeps the original registeredAt.

        Raises:
            ValidationError: If `name` or `url` is missing
        """
        name = payload.get("name")
        url = payload.get("url")
        if not name or not url:
            raise ValidationError("Service registration requires `name` and `url`.")

        service_type = payload.get("type") or "generic"
        if service_type not in SERVICE_TYPES:
            service_type = "generic"

        table = self._services[service_type]
        existing = table.get(name)
        now = now_iso()

        metadata = _as_dict(payload.get("metadata"))
        capabilities = _as_list(payload.get("capabilities"))

        record = ServiceRecord(
            name=name,
            url=normalize_url(url),
            type=service_type,
            metadata=metadata or (existing.metadata if existing else {}),
            capabilities=capabilities or (existing.capabilities if existing else []),
            registered_at=existing.registered_at if existing else now,
            last_heartbeat=now,
        )

        if service_type == "capability":
            endpoints = _as_dict(payload.get("endpoints"))
            if payload.get("endpoint"):
                endpoints["default"] = payload["endpoint"]
            provides = _as_list(payload.get("provides"))
            tools = _as_dict(payload.get("tools"))

            record.provides = provides or (existing.provides if existing else [])
            record.endpoints = endpoints or (existing.endpoints if existing else {})
            record.tools = tools or (existing.tools if existing else {})

            if existing is not None:
                self._unregister_aliases(existing)
            for alias in record.provides:
                previous = self._aliases.get(alias)
                if previous and previous != name:
                    logger.info(f"Capability alias '{alias}' moved from '{previous}' to '{name}'")
                self._aliases[alias] = name

        table[name] = record
        self.events.publish(ServiceRegistered(record))
        return record

    def register_capability(self, payload: Mapping[str, Any]) -> ServiceRecord:
        return self.register_service({**payload, "type": "capability"})

    def register_thing(self, payload: Mapping[str, Any]) -> ThingRecord:
        """
        Register a Thing and (re)compute its actions.

        A re-registered Thing Description replaces the previous action set.

        Raises:
            ValidationError: If `id` or `description` is missing
        """
        thing_id = payload.get("id")
        description = payload.get("description")
        if not thing_id or not description:
            raise ValidationError("Thing registration requires `id` and `description`.")
        if not isinstance(description, Mapping):
            raise ValidationError("Thing `description` must be a Thing Description object.")

        now = now_iso()
        existing = self._things.get(thing_id)
        record = ThingRecord(
            id=thing_id,
            description=dict(description),
            metadata=_as_dict(payload.get("metadata")),
            registered_at=existing.registered_at if existing else now,
            last_heartbeat=payload.get("lastHeartbeat") or now,
        )

        if self.catalog is not None:
            actions = self.catalog.refresh_thing_actions(
                thing_id=thing_id,
                thing_description=record.description,
                metadata=record.metadata,
            )
            record.actions = [a.to_dict() for a in actions]

        self._things[thing_id] = record
        self.events.publish(ThingRegistered(record))
        return record

    def register_device(self, payload: Mapping[str, Any]) -> DeviceRecord:
        """
        Register a rendering device.

        uiSchema and defaultPrompt fall back to the same keys in metadata.
        When the device carries an inline Thing Description, or points at an
        already registered Thing, that Thing's actions are ensured.

        Raises:
            ValidationError: If `id` or `name` is missing
        """
        device_id = payload.get("id")
        name = payload.get("name")
        if not device_id or not name:
            raise ValidationError("Device registration requires `id` and `name`.")

        metadata = _as_dict(payload.get("metadata"))
        thing_description = payload.get("thingDescription")
        if thing_description is not None and not isinstance(thing_description, Mapping):
            raise ValidationError("Device `thingDescription` must be an object.")

        now = now_iso()
        existing = self._devices.get(device_id)
        record = DeviceRecord(
            id=device_id,
            name=name,
            url=normalize_url(payload.get("url")) or None,
            thing_id=payload.get("thingId") or None,
            thing_description=dict(thing_description) if thing_description else None,
            capabilities=_as_list(payload.get("capabilities")),
            ui_schema=payload.get("uiSchema") or metadata.get("uiSchema") or None,
            default_prompt=payload.get("defaultPrompt") or metadata.get("defaultPrompt") or None,
            metadata=metadata,
            registered_at=existing.registered_at if existing else now,
            last_heartbeat=now,
        )

        self._ensure_device_actions(record)

        self._devices[device_id] = record
        self._services["device"][device_id] = ServiceRecord(
            name=device_id,
            url=record.url or "",
            type="device",
            metadata=metadata,
            capabilities=list(record.capabilities),
            registered_at=record.registered_at,
            last_heartbeat=record.last_heartbeat,
        )
        self.events.publish(DeviceRegistered(record))
        return record

    def _ensure_device_actions(self, record: DeviceRecord) -> None:
        if self.catalog is None:
            return
        if record.thing_description:
            self.catalog.ensure_thing_actions(
                thing_id=record.associated_thing_id,
                thing_description=record.thing_description,
                metadata=record.metadata,
            )
        elif record.thing_id and record.thing_id in self._things:
            thing = self._things[record.thing_id]
            self.catalog.ensure_thing_actions(
                thing_id=thing.id,
                thing_description=thing.description,
                metadata=thing.metadata,
            )

    def _unregister_aliases(self, record: ServiceRecord) -> None:
        for alias in record.provides:
            if self._aliases.get(alias) == record.name:
                del self._aliases[alias]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def resolve_capability_record(self, capability: Optional[str]) -> Optional[ServiceRecord]:
        """Look a capability up by alias first, then by service name."""
        if not capability:
            return None
        service_name = self._aliases.get(capability, capability)
        return self._services["capability"].get(service_name)

    @staticmethod
    def resolve_endpoint_config(record: Optional[ServiceRecord]) -> Optional[Dict[str, Any]]:
        """
        Resolve the executable endpoint of a capability service.

        Returns:
            {"url", "method", "headers"} or None when nothing is registered
        """
        if record is None:
            return None
        endpoints = record.endpoints or {}
        config = endpoints.get("default") or endpoints.get("invoke")
        if not config:
            return None

        if isinstance(config, str):
            return {"url": compose_url(record.url, config), "method": "GET", "headers": {}}

        if not isinstance(config, Mapping):
            return None

        return {
            "url": compose_url(record.url, config.get("path") or "/"),
            "method": str(config.get("method") or "GET").upper(),
            "headers": dict(config.get("headers") or {}),
        }

    def find_service(self, name: str) -> Optional[ServiceRecord]:
        for service_type in SERVICE_TYPES:
            record = self._services[service_type].get(name)
            if record is not None:
                return record
        return None

    def services(self, service_type: str = "generic") -> List[ServiceRecord]:
        return list(self._services.get(service_type, {}).values())

    def get_device(self, device_id: Optional[str]) -> Optional[DeviceRecord]:
        if not device_id:
            return None
        return self._devices.get(device_id)

    def devices(self) -> List[DeviceRecord]:
        return list(self._devices.values())

    def get_thing(self, thing_id: Optional[str]) -> Optional[ThingRecord]:
        if not thing_id:
            return None
        return self._things.get(thing_id)

    def things(self) -> List[ThingRecord]:
        return list(self._things.values())

    def capability_aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    def snapshot(self) -> Dict[str, Any]:
        things = []
        for thing in self._things.values():
            actions = (
                [a.to_dict() for a in self.catalog.get_actions_for_thing(thing.id)]
                if self.catalog is not None
                else thing.actions
            )
            things.append({
                "id": thing.id,
                "metadata": thing.metadata,
                "registeredAt": thing.registered_at,
                "lastHeartbeat": thing.last_heartbeat,
                "actions": actions,
            })
        return {
            "capabilities": [r.to_dict() for r in self._services["capability"].values()],
            "devices": [r.to_dict() for r in self._services["device"].values()],
            "services": [r.to_dict() for r in self._services["generic"].values()],
            "things": things,
        }

    @property
    def device_count(self) -> int:
        return len(self._devices)

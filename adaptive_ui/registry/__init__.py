"""Registry of services, capability aliases, devices and Things."""

from adaptive_ui.registry.events import (
    DeviceRegistered,
    RegistryEvents,
    ServiceRegistered,
    ThingRegistered,
)
from adaptive_ui.registry.models import DeviceRecord, ServiceRecord, ThingRecord
from adaptive_ui.registry.store import RegistryStore

__all__ = [
    "DeviceRecord",
    "DeviceRegistered",
    "RegistryEvents",
    "RegistryStore",
    "ServiceRecord",
    "ServiceRegistered",
    "ThingRecord",
    "ThingRegistered",
]

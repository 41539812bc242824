"""
Typed registry events and a minimal synchronous observer.

Handlers run inline, in subscription order. A handler that wants to do
network I/O schedules its own task; a failing handler is logged and does
not prevent the remaining handlers from running.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Type, TypeVar, Union

from adaptive_ui.registry.models import DeviceRecord, ServiceRecord, ThingRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceRegistered:
    record: ServiceRecord


@dataclass(frozen=True)
class ThingRegistered:
    record: ThingRecord


@dataclass(frozen=True)
class DeviceRegistered:
    record: DeviceRecord


RegistryEvent = Union[ServiceRegistered, ThingRegistered, DeviceRegistered]
E = TypeVar("E", ServiceRegistered, ThingRegistered, DeviceRegistered)


class RegistryEvents:
    def __init__(self) -> None:
        self._handlers: DefaultDict[type, List[Callable[[RegistryEvent], None]]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        self._handlers[event_type].append(handler)  # type: ignore[arg-type]

    def publish(self, event: RegistryEvent) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Registry event handler failed for {type(event).__name__}: {e}")

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, ()))

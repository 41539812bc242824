"""
Per-device UI delivery over persistent connections.

The hub caches the most recent UI per device and fans each dispatch out to
that device's connections plus every broadcast listener (connections that
did not name a device). A device that connects late receives the cached UI
as its first frame.

Connections only need an async `send_json(data)` method, which FastAPI's
WebSocket provides.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.knowledge.ui_schema import placeholder_ui
from adaptive_ui.registry.models import now_iso

log = get_logger("ADUI.Delivery")

AWAITING_UI_TEXT = "Awaiting UI definition from core system…"


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


def build_frame(device_id: Optional[str], ui: dict[str, Any]) -> dict[str, Any]:
    return {"deviceId": device_id, "generatedAt": now_iso(), "ui": ui}


class DeliveryHub:
    def __init__(self) -> None:
        self._by_device: dict[str, set[Connection]] = {}
        self._listeners: set[Connection] = set()
        self._device_of: dict[int, Optional[str]] = {}
        self._latest: dict[str, dict[str, Any]] = {}

    async def connect(self, connection: Connection, device_id: Optional[str] = None) -> None:
        """Register a connection and send its first frame (cached UI or a placeholder)."""
        if id(connection) in self._device_of:
            self.disconnect(connection)
        if device_id:
            self._by_device.setdefault(device_id, set()).add(connection)
        else:
            self._listeners.add(connection)
        self._device_of[id(connection)] = device_id or None

        cached = self._latest.get(device_id) if device_id else None
        log.info(
            "ADUI.Delivery.Connected",
            extra={"fields": {"device_id": device_id, "cached": cached is not None}},
        )
        frame = build_frame(device_id or None, cached if cached is not None else placeholder_ui(AWAITING_UI_TEXT))
        try:
            await connection.send_json(frame)
        except Exception as e:
            log.warning("ADUI.Delivery.SendFailed", extra={"fields": {"device_id": device_id, "error": repr(e)}})
            self.disconnect(connection)

    def disconnect(self, connection: Connection) -> None:
        device_id = self._device_of.pop(id(connection), None)
        if device_id:
            sockets = self._by_device.get(device_id)
            if sockets is not None:
                sockets.discard(connection)
                if not sockets:
                    del self._by_device[device_id]
        else:
            self._listeners.discard(connection)
        log.info("ADUI.Delivery.Disconnected", extra={"fields": {"device_id": device_id}})

    async def dispatch(self, device_id: Optional[str], ui: dict[str, Any]) -> int:
        """
        Cache `ui` for the device, then push it.

        device_id=None pushes to every open connection without caching.

        Returns:
            Number of connections the frame was delivered to
        """
        if device_id:
            self._latest[device_id] = ui

        frame = build_frame(device_id, ui)
        if device_id:
            targets = list(self._by_device.get(device_id, ())) + list(self._listeners)
        else:
            targets = [c for sockets in self._by_device.values() for c in sockets] + list(self._listeners)

        if device_id and device_id not in self._by_device:
            log.info("ADUI.Delivery.Cached", extra={"fields": {"device_id": device_id}})

        delivered = 0
        for connection in targets:
            try:
                await connection.send_json(frame)
                delivered += 1
            except Exception as e:
                log.warning(
                    "ADUI.Delivery.SendFailed",
                    extra={"fields": {"device_id": device_id, "error": repr(e)}},
                )
                self.disconnect(connection)
        return delivered

    def latest(self, device_id: str) -> Optional[dict[str, Any]]:
        return self._latest.get(device_id)

    def connection_count(self, device_id: Optional[str] = None) -> int:
        if device_id:
            return len(self._by_device.get(device_id, ()))
        return sum(len(s) for s in self._by_device.values()) + len(self._listeners)

"""
UI generation orchestrator.

generate_ui_for_device() is the whole pipeline for one request:

    select device -> resolve capabilities/schema/tools -> gather Thing
    actions and capability samples -> knowledge backend -> bind actions
    -> dispatch

Registry events trigger regeneration: a registered device gets its first
UI, a (re)registered Thing refreshes every device bound to it.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from adaptive_ui.actions.catalog import ActionCatalog
from adaptive_ui.adui_logging import get_logger, log_event
from adaptive_ui.config import FALLBACK_PROMPT
from adaptive_ui.errors import GenerationError
from adaptive_ui.generation.binder import ActionBinder
from adaptive_ui.generation.context import (
    build_dynamic_prompt,
    collect_capability_data,
    collect_thing_actions_for_device,
    summarize_capabilities_for_prompt,
)
from adaptive_ui.generation.selector import DeviceSelector, SelectionMeta
from adaptive_ui.knowledge.ui_schema import default_response_schema, placeholder_ui
from adaptive_ui.registry.events import DeviceRegistered, RegistryEvents, ThingRegistered
from adaptive_ui.registry.models import DeviceRecord, compose_url
from adaptive_ui.registry.store import RegistryStore
from adaptive_ui.transport.delivery import DeliveryHub

logger = logging.getLogger(__name__)
log = get_logger("ADUI.Orchestrator")

EMPTY_UI_TEXT = "Error: UI generation failed. The generated UI is empty."


@dataclass
class GenerationOutcome:
    ui: dict[str, Any]
    device_id: str
    selection: SelectionMeta
    meta: Optional[dict[str, Any]] = None


def _tool_capability(descriptor: Any) -> Optional[str]:
    if not isinstance(descriptor, dict):
        return None
    return descriptor.get("capability") or descriptor.get("capabilityAlias") or descriptor.get("provides")


class UiOrchestrator:
    """
    Args:
        store: Registry of devices, capabilities and Things
        catalog: Action catalog backing the registry
        selector: Target device selection
        backend: Knowledge backend (`query`/`select_device`)
        hub: Delivery hub for generated documents
        binder: Core-side action binder
        fallback_prompt: Prompt used when neither request nor device has one
        client: Shared HTTP client for capability calls
    """

    def __init__(
        self,
        store: RegistryStore,
        catalog: ActionCatalog,
        selector: DeviceSelector,
        backend: Any,
        hub: DeliveryHub,
        *,
        binder: Optional[ActionBinder] = None,
        fallback_prompt: str = FALLBACK_PROMPT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.selector = selector
        self.backend = backend
        self.hub = hub
        self.binder = binder or ActionBinder()
        self.fallback_prompt = fallback_prompt
        self.client = client
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _resolve_capabilities(self, requested: list[str], device: DeviceRecord) -> list[str]:
        if requested:
            return list(requested)
        if device.capabilities:
            return list(device.capabilities)
        return list(self.store.capability_aliases())

    def _resolve_schema(self, schema: Optional[dict[str, Any]], device: DeviceRecord) -> dict[str, Any]:
        if schema:
            resolved = copy.deepcopy(schema)
        elif isinstance(device.ui_schema, dict):
            resolved = copy.deepcopy(device.ui_schema)
        else:
            resolved = {"components": {}}
        resolved.setdefault("name", device.id)
        resolved["responseSchema"] = (
            resolved.get("responseSchema") or resolved.get("outputSchema") or resolved.get("jsonSchema")
            or default_response_schema()
        )
        return resolved

    def _merge_capability_tools(self, schema: dict[str, Any], capabilities: list[str]) -> list[str]:
        """Install capability tools into schema["tools"] (schema tools win); returns the widened capability list."""
        capability_tools: dict[str, Any] = {}
        for name in capabilities:
            record = self.store.resolve_capability_record(name)
            if record is None or not record.tools:
                continue
            for tool_name, descriptor in record.tools.items():
                if not isinstance(descriptor, dict):
                    continue
                tool = dict(descriptor)
                tool.setdefault("capability", name)
                tool.setdefault("service", record.name)
                if not tool.get("url"):
                    tool["url"] = compose_url(record.url, tool.get("path") or "/")
                capability_tools[tool_name] = tool

        existing = schema.get("tools") if isinstance(schema.get("tools"), dict) else {}
        merged = {**capability_tools, **existing}
        if not merged:
            schema.pop("tools", None)
            return capabilities

        schema["tools"] = merged
        widened = list(capabilities)
        for descriptor in merged.values():
            capability = _tool_capability(descriptor)
            if capability and capability not in widened:
                widened.append(capability)
        return widened

    def _resolve_thing_description(
        self, thing_description: Optional[dict[str, Any]], device: DeviceRecord
    ) -> Optional[dict[str, Any]]:
        if thing_description:
            return thing_description
        if device.thing_description:
            return device.thing_description
        thing = self.store.get_thing(device.thing_id)
        return thing.description if thing is not None else None

    @staticmethod
    def _sanitize_capability_data(capability_data: dict[str, Any], tools: dict[str, Any]) -> dict[str, Any]:
        # Tool-backed capabilities: the model must call the tool for live values.
        hints = {}
        for tool_name, descriptor in tools.items():
            capability = _tool_capability(descriptor)
            if capability:
                hints[capability] = tool_name

        sanitized = {}
        for name, details in capability_data.items():
            tool_name = hints.get(name)
            if tool_name is None:
                sanitized[name] = details
                continue
            entry: dict[str, Any] = {
                "note": f"Use tool '{tool_name}' to retrieve the latest data for capability '{name}'."
            }
            if isinstance(details, dict) and details.get("error"):
                entry["error"] = details["error"]
            if isinstance(details, dict) and "data" in details:
                entry["cachedSample"] = details["data"]
            sanitized[name] = entry
        return sanitized

    async def generate_ui_for_device(
        self,
        device_id: Optional[str] = None,
        prompt: Optional[str] = None,
        schema: Optional[dict[str, Any]] = None,
        thing_description: Optional[dict[str, Any]] = None,
        capabilities: Optional[Sequence[str]] = None,
        broadcast: bool = True,
        model: Optional[str] = None,
    ) -> GenerationOutcome:
        """
        Generate (and by default dispatch) a UI document.

        Raises:
            GenerationError: No target device, unknown device, or the knowledge backend failed
        """
        requested = [c for c in capabilities or [] if c]

        selection = await self.selector.resolve(
            device_id,
            requested,
            prompt=prompt or self.fallback_prompt,
            thing_description=thing_description,
            model=model,
        )
        if not selection.device_id:
            raise GenerationError("No suitable device available for UI generation.")
        device = self.store.get_device(selection.device_id)
        if device is None:
            raise GenerationError(f"Unknown device '{selection.device_id}'.")

        resolved_capabilities = self._resolve_capabilities(requested, device)
        capability_summary = summarize_capabilities_for_prompt(self.store, resolved_capabilities)
        resolved_prompt = build_dynamic_prompt(
            self.store,
            base_prompt=prompt or device.default_prompt or self.fallback_prompt,
            target_device=device,
            desired_capabilities=resolved_capabilities,
            selection_reason=selection.reason,
            selection_score=selection.score,
            capability_summary=capability_summary,
        )

        resolved_schema = self._resolve_schema(schema, device)
        resolved_capabilities = self._merge_capability_tools(resolved_schema, resolved_capabilities)

        resolved_td = self._resolve_thing_description(thing_description, device)
        actions = collect_thing_actions_for_device(self.store, self.catalog, device, resolved_td)
        action_dicts = [a.to_dict() for a in actions]
        available_things = [
            {"id": t.id, "title": t.title, "description": t.description, "metadata": t.metadata}
            for t in self.store.things()
        ]

        capability_data, missing = await collect_capability_data(
            self.store,
            resolved_capabilities,
            {"prompt": resolved_prompt, "deviceId": device.id, "device": device.to_dict()},
            client=self.client,
        )

        payload = {
            "prompt": resolved_prompt,
            "schema": resolved_schema,
            "thingDescription": resolved_td,
            "capabilities": resolved_capabilities,
            "capabilityData": self._sanitize_capability_data(capability_data, resolved_schema.get("tools") or {}),
            "missingCapabilities": missing,
            "deviceId": device.id,
            "device": device.to_dict(),
            "selection": {
                "reason": selection.reason,
                "score": selection.score,
                "confidence": selection.confidence,
                "alternateDeviceIds": selection.alternate_device_ids,
                "consideredDevices": [d.id for d in self.store.devices()],
                "raw": selection.raw,
                "targetDeviceId": device.id,
            },
            "thingActions": action_dicts,
            "availableThings": available_things,
        }
        if model:
            payload["model"] = model

        log_event(
            log,
            "ADUI.Orchestrator.Generating",
            device_id=device.id,
            capabilities=resolved_capabilities,
            reason=selection.reason,
            actions=len(action_dicts),
        )
        ui, meta = await self.backend.query(payload)

        if not isinstance(ui, dict) or not ui:
            ui = placeholder_ui(EMPTY_UI_TEXT)
        fallback_thing = device.thing_id or (resolved_td.get("id") if isinstance(resolved_td, dict) else None)
        ui = self.binder.bind(ui, action_dicts, fallback_thing)

        if broadcast:
            await self.hub.dispatch(device.id, ui)
            log_event(log, "ADUI.Orchestrator.Dispatched", device_id=device.id)

        return GenerationOutcome(ui=ui, device_id=device.id, selection=selection, meta=meta)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, device_id: Optional[str] = None) -> dict[str, Any]:
        """
        Regenerate one device, or all devices concurrently.

        Per-device failures are collected, never raised.

        Raises:
            GenerationError: If no device is registered
        """
        targets = [device_id] if device_id else [d.id for d in self.store.devices()]
        if not targets:
            raise GenerationError("No devices registered.")
        return await self.refresh_many(targets)

    async def refresh_devices_for_thing(self, thing_id: str) -> list[str]:
        """Regenerate every device bound to the Thing; returns the refreshed device ids."""
        device_ids = [d.id for d in self.store.devices() if d.associated_thing_id == thing_id]
        if not device_ids:
            return []
        result = await self.refresh_many(device_ids)
        return result["successes"]

    async def refresh_many(self, device_ids: Sequence[str]) -> dict[str, Any]:
        results = await asyncio.gather(
            *(self.generate_ui_for_device(device_id=d) for d in device_ids),
            return_exceptions=True,
        )
        successes, failures = [], []
        for device_id, result in zip(device_ids, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append({"deviceId": device_id, "error": str(result)})
                log_event(log, "ADUI.Orchestrator.RefreshFailed", logging.ERROR, device_id=device_id, error=str(result))
            else:
                successes.append(device_id)
        return {"successes": successes, "failures": failures}

    # ------------------------------------------------------------------
    # Event wiring / background work
    # ------------------------------------------------------------------

    def subscribe(self, events: RegistryEvents) -> None:
        events.subscribe(DeviceRegistered, self._on_device_registered)
        events.subscribe(ThingRegistered, self._on_thing_registered)

    def _spawn(self, coro: Any, label: str) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.info(f"No running event loop; skipped background {label}")
            return None
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _initial_generation(self, device_id: str) -> None:
        try:
            await self.generate_ui_for_device(device_id=device_id)
        except Exception as e:
            log_event(log, "ADUI.Orchestrator.InitialGenerationFailed", logging.ERROR, device_id=device_id, error=str(e))

    def _on_device_registered(self, event: DeviceRegistered) -> None:
        self._spawn(self._initial_generation(event.record.id), f"generation for '{event.record.id}'")

    def _on_thing_registered(self, event: ThingRegistered) -> None:
        self._spawn(self.refresh_devices_for_thing(event.record.id), f"refresh for thing '{event.record.id}'")

    async def run_periodic_refresh(self, interval_s: float) -> None:
        """Regenerate every device each interval_s seconds until cancelled."""
        while True:
            await asyncio.sleep(interval_s)
            if self.store.device_count == 0:
                continue
            result = await self.refresh_many([d.id for d in self.store.devices()])
            log_event(
                log,
                "ADUI.Orchestrator.PeriodicRefresh",
                successes=len(result["successes"]),
                failures=len(result["failures"]),
            )

    async def drain(self) -> None:
        """Wait for background generations spawned by registry events."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()

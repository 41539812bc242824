"""
Core-side context gathering for a generation request.

Capability summaries and live capability samples come from the registry;
Thing actions come from the action catalog. None of these helpers raise on
unknown names: missing pieces are described in the returned data instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional, Sequence

import httpx

from adaptive_ui.actions.catalog import ActionCatalog
from adaptive_ui.actions.models import ActionDescriptor
from adaptive_ui.registry.models import DeviceRecord, compose_url
from adaptive_ui.registry.store import RegistryStore

logger = logging.getLogger(__name__)

NO_CAPABILITIES_TEXT = "No supplementary capabilities are available beyond the device itself."


def _unique(names: Iterable[Optional[str]]) -> list[str]:
    seen: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
    return seen


def summarize_capabilities_for_prompt(store: RegistryStore, capability_names: Iterable[str]) -> str:
    """Describe each capability (provider, endpoint, callable tools) as prose for the model."""
    names = _unique(capability_names)
    if not names:
        return NO_CAPABILITIES_TEXT

    summaries = []
    for name in names:
        record = store.resolve_capability_record(name)
        if record is None:
            summaries.append(f"- {name}: not currently registered; avoid referencing this capability.")
            continue

        parts = [f"- {name}: provided by service '{record.name}' at {record.url}"]
        if record.metadata.get("description"):
            parts.append(f"  • Description: {record.metadata['description']}")

        endpoint = store.resolve_endpoint_config(record)
        if endpoint is not None:
            parts.append(f"  • Default endpoint: {endpoint['method']} {endpoint['url']}")

        if record.tools:
            parts.append("  • LLM-callable tools:")
            for tool_name, descriptor in record.tools.items():
                if not isinstance(descriptor, dict):
                    parts.append(f"    - {tool_name}")
                    continue
                method = str(descriptor.get("method") or "GET").upper()
                url = descriptor.get("url") or compose_url(record.url, descriptor.get("path") or "/")
                desc = f": {descriptor['description']}" if descriptor.get("description") else ""
                parts.append(f"    - {tool_name} ({method} {url}){desc}")

        summaries.append("\n".join(parts))
    return "\n".join(summaries)


async def collect_capability_data(
    store: RegistryStore,
    capability_names: Sequence[str],
    context: dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[dict[str, Any], list[str]]:
    """
    Fetch one live sample per capability, concurrently.

    Unregistered and unreachable capabilities (transport error, non-2xx,
    invalid JSON) are listed in missing_capabilities.

    Returns:
        (capability_data, missing_capabilities)
    """
    capability_data: dict[str, Any] = {}
    missing: list[str] = []

    async def _fetch(c: httpx.AsyncClient, name: str) -> None:
        record = store.resolve_capability_record(name)
        if record is None:
            missing.append(name)
            capability_data[name] = {"error": "Capability not registered"}
            logger.warning(f"Capability '{name}' is missing from the registry")
            return

        endpoint = store.resolve_endpoint_config(record)
        if endpoint is None:
            capability_data[name] = {
                "source": record.name,
                "metadata": record.metadata or None,
                "note": "No executable endpoint registered",
            }
            logger.warning(f"Capability '{record.name}' registered without an executable endpoint")
            return

        method = endpoint["method"]
        headers = dict(endpoint["headers"])
        try:
            if method == "GET":
                r = await c.request(method, endpoint["url"], headers=headers)
            else:
                headers.setdefault("Content-Type", "application/json")
                r = await c.request(method, endpoint["url"], headers=headers, json={"context": context})
        except httpx.HTTPError as e:
            capability_data[name] = {"source": record.name, "error": str(e) or type(e).__name__}
            missing.append(name)
            logger.error(f"Error fetching capability '{record.name}': {e}")
            return

        if r.status_code >= 400:
            capability_data[name] = {
                "source": record.name,
                "error": f"Capability responded with status {r.status_code}",
            }
            missing.append(name)
            logger.error(f"Capability '{record.name}' responded with status {r.status_code}")
            return

        try:
            data = r.json()
        except ValueError as e:
            capability_data[name] = {"source": record.name, "error": f"Invalid JSON from capability: {e}"}
            missing.append(name)
            return
        capability_data[name] = {"source": record.name, "data": data}

    names = _unique(capability_names)
    if client is not None:
        await asyncio.gather(*(_fetch(client, n) for n in names))
    else:
        async with httpx.AsyncClient() as c:
            await asyncio.gather(*(_fetch(c, n) for n in names))
    return capability_data, missing


def collect_thing_actions_for_device(
    store: RegistryStore,
    catalog: ActionCatalog,
    device: Optional[DeviceRecord],
    thing_description: Optional[dict[str, Any]],
) -> list[ActionDescriptor]:
    """Actions of the device's own Thing first, then of every other registered Thing."""
    explicit = (device.thing_id if device else None) or (
        thing_description.get("id") if isinstance(thing_description, dict) else None
    )
    ordered = _unique([explicit, *(t.id for t in store.things())])

    aggregated: list[ActionDescriptor] = []
    for thing_id in ordered:
        thing = store.get_thing(thing_id)
        if thing_id == explicit:
            description = thing_description or (thing.description if thing else None)
            metadata = (device.metadata if device else None) or (thing.metadata if thing else None)
        elif thing is not None:
            description, metadata = thing.description, thing.metadata
        else:
            continue
        if not description:
            continue
        aggregated.extend(
            catalog.ensure_thing_actions(thing_id=thing_id, thing_description=description, metadata=metadata)
        )
    return aggregated


def build_dynamic_prompt(
    store: RegistryStore,
    *,
    base_prompt: str,
    target_device: Optional[DeviceRecord],
    desired_capabilities: Sequence[str] = (),
    selection_reason: Optional[str] = None,
    selection_score: Optional[dict[str, Any]] = None,
    capability_summary: Optional[str] = None,
) -> str:
    device_lines = []
    for device in store.devices():
        components = device.metadata.get("supportedUiComponents")
        components_text = ", ".join(components) if isinstance(components, list) else "unspecified"
        capabilities_text = ", ".join(device.capabilities) or "none"
        device_lines.append(
            f"- {device.name} ({device.id}): capabilities [{capabilities_text}], components [{components_text}]"
        )

    target = f"{target_device.name} ({target_device.id})" if target_device else "none available"
    if desired_capabilities:
        capability_clause = f"Requested capabilities: {', '.join(desired_capabilities)}."
    else:
        capability_clause = "No explicit capability requirements were provided."

    if selection_reason:
        missing = (selection_score or {}).get("missing") or []
        missing_clause = f" (missing capabilities: {', '.join(missing)})" if missing else ""
        selection_clause = f"Selection reason: {selection_reason}{missing_clause}."
    else:
        selection_clause = "Selection reason: not provided."

    sections = [
        base_prompt,
        "---",
        "Connected device overview:",
        "\n".join(device_lines),
        capability_clause,
        f"Target device for this UI: {target}.",
        selection_clause,
        f"Registered capabilities available to augment the UI:\n{capability_summary}" if capability_summary else None,
        "Make sure the generated UI is tailored to the target device and its capabilities.",
    ]
    return "\n\n".join(s for s in sections if s)

from __future__ import annotations

import asyncio
import contextlib
import copy
from typing import Any, Iterable

import httpx
import pytest

from adaptive_ui.actions.catalog import ActionCatalog
from adaptive_ui.errors import GenerationError, KnowledgeBackendError
from adaptive_ui.generation.orchestrator import EMPTY_UI_TEXT, UiOrchestrator
from adaptive_ui.generation.selector import DeviceSelector
from adaptive_ui.registry.store import RegistryStore
from adaptive_ui.transport.delivery import DeliveryHub


LIGHTS_UI = {
    "type": "container",
    "children": [{"type": "button", "props": {"label": "Turn on lights"}}],
}


class FakeBackend:
    def __init__(self, ui: Any = None, fail_for: Iterable[str] = ()):
        self.ui = LIGHTS_UI if ui is None else ui
        self.fail_for = set(fail_for)
        self.payloads: list[dict[str, Any]] = []

    async def query(self, payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        self.payloads.append(payload)
        if payload["deviceId"] in self.fail_for:
            raise KnowledgeBackendError("Knowledge base error (502)")
        return copy.deepcopy(self.ui), {"provider": "fake"}

    async def select_device(self, payload: dict[str, Any]) -> None:
        return None


def _weather_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"temperature": 21}))
    )


def _orchestrator(
    store: RegistryStore,
    catalog: ActionCatalog,
    backend: FakeBackend,
    client: httpx.AsyncClient | None = None,
) -> tuple[UiOrchestrator, DeliveryHub]:
    hub = DeliveryHub()
    orchestrator = UiOrchestrator(
        store,
        catalog,
        DeviceSelector(store, backend),
        backend,
        hub,
        fallback_prompt="Fallback prompt",
        client=client,
    )
    return orchestrator, hub


@pytest.mark.asyncio
async def test_generate_binds_and_dispatches(store: RegistryStore, catalog: ActionCatalog, lights_td: dict) -> None:
    store.register_thing({"id": "thing-1", "description": lights_td})
    store.register_device({"id": "tablet", "name": "Tablet", "thingId": "thing-1"})
    backend = FakeBackend()
    orchestrator, hub = _orchestrator(store, catalog, backend)

    outcome = await orchestrator.generate_ui_for_device(prompt="Show the lights")

    button = outcome.ui["children"][0]
    assert outcome.device_id == "tablet"
    assert button["props"]["action"]["id"] == "thing-1::turnOn"
    assert button["props"]["action"]["transport"]["url"] == "http://lights.local/actions/turnOn"
    assert hub.latest("tablet") == outcome.ui
    assert outcome.meta == {"provider": "fake"}

    payload = backend.payloads[0]
    assert payload["prompt"].startswith("Show the lights")
    assert payload["schema"]["name"] == "tablet"
    assert "responseSchema" in payload["schema"]
    assert [a["id"] for a in payload["thingActions"]] == [
        "thing-1::turnOn", "thing-1::turnOff", "thing-1::toggle",
    ]
    assert payload["availableThings"][0]["id"] == "thing-1"
    assert payload["selection"]["consideredDevices"] == ["tablet"]
    assert payload["selection"]["targetDeviceId"] == "tablet"
    assert payload["selection"]["reason"] == "only-device-available"


@pytest.mark.asyncio
async def test_device_default_prompt_is_used(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet", "defaultPrompt": "Kitchen dashboard"})
    backend = FakeBackend()
    orchestrator, _ = _orchestrator(store, catalog, backend)

    await orchestrator.generate_ui_for_device()

    assert backend.payloads[0]["prompt"].startswith("Kitchen dashboard")


@pytest.mark.asyncio
async def test_unknown_device_raises(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet"})
    orchestrator, _ = _orchestrator(store, catalog, FakeBackend())

    with pytest.raises(GenerationError, match="Unknown device 'watch'"):
        await orchestrator.generate_ui_for_device(device_id="watch")


@pytest.mark.asyncio
async def test_no_devices_raises(store: RegistryStore, catalog: ActionCatalog) -> None:
    orchestrator, _ = _orchestrator(store, catalog, FakeBackend())

    with pytest.raises(GenerationError, match="No suitable device"):
        await orchestrator.generate_ui_for_device()


@pytest.mark.asyncio
async def test_empty_result_becomes_placeholder(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet"})
    orchestrator, hub = _orchestrator(store, catalog, FakeBackend(ui={}))

    outcome = await orchestrator.generate_ui_for_device()

    assert outcome.ui["children"][0]["content"] == EMPTY_UI_TEXT
    assert hub.latest("tablet") == outcome.ui


@pytest.mark.asyncio
async def test_broadcast_false_skips_delivery(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet"})
    orchestrator, hub = _orchestrator(store, catalog, FakeBackend())

    await orchestrator.generate_ui_for_device(device_id="tablet", broadcast=False)

    assert hub.latest("tablet") is None


@pytest.mark.asyncio
async def test_capability_tools_are_merged(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_capability({
        "name": "weather-service",
        "url": "http://weather.local",
        "provides": ["weather"],
        "endpoint": "/now",
        "tools": {"getWeather": {"path": "/now", "description": "Current weather"}},
    })
    store.register_device({
        "id": "tablet",
        "name": "Tablet",
        "capabilities": ["weather"],
        "uiSchema": {"components": {"text": {}}, "tools": {"localTool": {"url": "http://local/tool"}}},
    })
    backend = FakeBackend()
    async with _weather_client() as client:
        orchestrator, _ = _orchestrator(store, catalog, backend, client)
        await orchestrator.generate_ui_for_device(device_id="tablet")

    payload = backend.payloads[0]
    tools = payload["schema"]["tools"]
    assert set(tools) == {"getWeather", "localTool"}
    assert tools["getWeather"]["url"] == "http://weather.local/now"
    assert tools["getWeather"]["service"] == "weather-service"
    assert payload["capabilities"] == ["weather"]
    assert payload["capabilityData"]["weather"] == {
        "note": "Use tool 'getWeather' to retrieve the latest data for capability 'weather'.",
        "cachedSample": {"temperature": 21},
    }


@pytest.mark.asyncio
async def test_requested_capabilities_override_device(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet", "capabilities": ["weather"]})
    backend = FakeBackend()
    orchestrator, _ = _orchestrator(store, catalog, backend)

    await orchestrator.generate_ui_for_device(device_id="tablet", capabilities=["traffic"])

    payload = backend.payloads[0]
    assert payload["capabilities"] == ["traffic"]
    assert payload["missingCapabilities"] == ["traffic"]
    assert payload["capabilityData"]["traffic"] == {"error": "Capability not registered"}


@pytest.mark.asyncio
async def test_refresh_collects_failures(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet"})
    store.register_device({"id": "watch", "name": "Watch"})
    orchestrator, hub = _orchestrator(store, catalog, FakeBackend(fail_for=["watch"]))

    result = await orchestrator.refresh()

    assert result["successes"] == ["tablet"]
    assert result["failures"] == [{"deviceId": "watch", "error": "Knowledge base error (502)"}]
    assert hub.latest("tablet") is not None


@pytest.mark.asyncio
async def test_refresh_without_devices_raises(store: RegistryStore, catalog: ActionCatalog) -> None:
    orchestrator, _ = _orchestrator(store, catalog, FakeBackend())

    with pytest.raises(GenerationError, match="No devices registered"):
        await orchestrator.refresh()


@pytest.mark.asyncio
async def test_registry_events_trigger_generation(
    store: RegistryStore, catalog: ActionCatalog, lights_td: dict
) -> None:
    backend = FakeBackend()
    orchestrator, hub = _orchestrator(store, catalog, backend)
    orchestrator.subscribe(store.events)

    store.register_device({"id": "tablet", "name": "Tablet", "thingId": "thing-1"})
    store.register_device({"id": "speaker", "name": "Speaker"})
    store.register_thing({"id": "thing-1", "description": lights_td})
    await orchestrator.drain()

    assert sorted(p["deviceId"] for p in backend.payloads) == ["speaker", "tablet", "tablet"]
    assert hub.latest("tablet")["children"][0]["props"]["action"]["id"] == "thing-1::turnOn"


def test_events_without_running_loop_are_skipped(store: RegistryStore, catalog: ActionCatalog) -> None:
    backend = FakeBackend()
    orchestrator, _ = _orchestrator(store, catalog, backend)
    orchestrator.subscribe(store.events)

    store.register_device({"id": "tablet", "name": "Tablet"})

    assert backend.payloads == []


@pytest.mark.asyncio
async def test_refresh_devices_for_thing(store: RegistryStore, catalog: ActionCatalog, lights_td: dict) -> None:
    store.register_device({"id": "tablet", "name": "Tablet", "thingDescription": lights_td})
    store.register_device({"id": "speaker", "name": "Speaker"})
    orchestrator, _ = _orchestrator(store, catalog, FakeBackend())

    assert await orchestrator.refresh_devices_for_thing("thing-1") == ["tablet"]
    assert await orchestrator.refresh_devices_for_thing("nothing") == []


@pytest.mark.asyncio
async def test_periodic_refresh(store: RegistryStore, catalog: ActionCatalog) -> None:
    store.register_device({"id": "tablet", "name": "Tablet"})
    backend = FakeBackend()
    orchestrator, _ = _orchestrator(store, catalog, backend)

    task = asyncio.create_task(orchestrator.run_periodic_refresh(0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert backend.payloads
    await orchestrator.aclose()

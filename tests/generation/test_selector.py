from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest

from adaptive_ui.generation.selector import (
    DeviceSelector,
    score_device_for_capabilities,
    summarize_candidate_device,
)
from adaptive_ui.registry.store import RegistryStore


@pytest.fixture
def two_devices() -> RegistryStore:
    store = RegistryStore()
    store.register_device({"id": "speaker", "name": "Speaker", "capabilities": ["audio"]})
    store.register_device({
        "id": "tablet",
        "name": "Tablet",
        "capabilities": ["audio", "touch"],
        "metadata": {"supportsTouch": True, "supportedUiComponents": ["button"]},
    })
    return store


class TestHeuristic:
    def test_score(self, two_devices: RegistryStore) -> None:
        tablet = two_devices.get_device("tablet")
        assert score_device_for_capabilities(tablet, ["touch", "gps"]) == {
            "matches": 1, "missing": ["gps"], "supportsAll": False,
        }
        assert score_device_for_capabilities(None, ["gps"])["supportsAll"] is False

    def test_best_match_wins(self, two_devices: RegistryStore) -> None:
        choice = DeviceSelector(two_devices).select_target_device(None, ["touch"])
        assert choice.device.id == "tablet"
        assert choice.reason == "auto-selected-best-match"

    def test_ties_keep_registration_order(self, two_devices: RegistryStore) -> None:
        choice = DeviceSelector(two_devices).select_target_device(None, ["audio"])
        assert choice.device.id == "speaker"

    def test_no_capabilities_picks_first_device(self, two_devices: RegistryStore) -> None:
        choice = DeviceSelector(two_devices).select_target_device()
        assert choice.device.id == "speaker"
        assert choice.reason == "no-capabilities-requested"

    def test_empty_registry(self) -> None:
        choice = DeviceSelector(RegistryStore()).select_target_device(None, ["touch"])
        assert choice.device is None
        assert choice.reason == "no-devices-registered"

    def test_unknown_requested_device(self, two_devices: RegistryStore) -> None:
        choice = DeviceSelector(two_devices).select_target_device("watch")
        assert choice.device is None
        assert choice.reason == "requested-device-not-found"

    def test_candidate_summary(self, two_devices: RegistryStore) -> None:
        summary = summarize_candidate_device(two_devices.get_device("tablet"), ["touch"])

        assert summary["metadata"]["supportsTouch"] is True
        assert summary["metadata"]["supportsAudio"] is False
        assert summary["metadata"]["supportedUiComponents"] == ["button"]
        assert summary["uiSchema"] is None
        assert summary["score"]["supportsAll"] is True


class TestResolve:
    @pytest.mark.asyncio
    async def test_explicit_device_skips_backend(self, two_devices: RegistryStore) -> None:
        backend = AsyncMock()
        meta = await DeviceSelector(two_devices, backend).resolve("speaker", ["touch"])

        assert meta.device_id == "speaker"
        assert meta.confidence == "certain"
        assert meta.score["missing"] == ["touch"]
        backend.select_device.assert_not_called()

    @pytest.mark.asyncio
    async def test_sole_device(self) -> None:
        store = RegistryStore()
        store.register_device({"id": "only", "name": "Only"})
        backend = AsyncMock()

        meta = await DeviceSelector(store, backend).resolve()

        assert meta.device_id == "only"
        assert meta.reason == "only-device-available"
        assert meta.confidence == "high"
        backend.select_device.assert_not_called()

    @pytest.mark.asyncio
    async def test_backend_arbitrates(self, two_devices: RegistryStore) -> None:
        backend = AsyncMock()
        backend.select_device.return_value = {
            "targetDeviceId": "speaker",
            "reason": "user is cooking",
            "confidence": "medium",
            "alternateDeviceIds": ["tablet"],
        }
        selector = DeviceSelector(two_devices, backend, fallback_prompt="fallback")

        meta = await selector.resolve(None, ["touch"], prompt="Show lights", model="m")

        assert meta.device_id == "speaker"
        assert meta.reason == "user is cooking"
        assert meta.alternate_device_ids == ["tablet"]
        assert meta.to_dict()["alternateDeviceIds"] == ["tablet"]

        payload: dict[str, Any] = backend.select_device.await_args.args[0]
        assert payload["prompt"] == "Show lights"
        assert payload["fallbackPrompt"] == "fallback"
        assert payload["model"] == "m"
        assert [c["id"] for c in payload["candidates"]] == ["speaker", "tablet"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcome",
        [None, {"reason": "no target"}, {"targetDeviceId": "watch"}, RuntimeError("backend down")],
    )
    async def test_heuristic_fallback(self, two_devices: RegistryStore, outcome: Any) -> None:
        backend = AsyncMock()
        if isinstance(outcome, Exception):
            backend.select_device.side_effect = outcome
        else:
            backend.select_device.return_value = outcome

        meta = await DeviceSelector(two_devices, backend).resolve(None, ["touch"])

        assert meta.device_id == "tablet"
        assert meta.confidence == "heuristic"
        assert meta.raw == {"heuristic": True}

    @pytest.mark.asyncio
    async def test_no_backend_uses_heuristic(self, two_devices: RegistryStore) -> None:
        meta = await DeviceSelector(two_devices).resolve(None, ["touch"])
        assert meta.device_id == "tablet"

    @pytest.mark.asyncio
    async def test_no_devices(self) -> None:
        meta = await DeviceSelector(RegistryStore(), AsyncMock()).resolve()
        assert meta.device_id is None

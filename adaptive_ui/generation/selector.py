"""
Target device selection.

An explicit device id always wins. With a single registered device there is
nothing to decide. Otherwise the knowledge backend arbitrates between
candidates, and the capability heuristic takes over whenever that fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.registry.models import DeviceRecord
from adaptive_ui.registry.store import RegistryStore

logger = logging.getLogger(__name__)
log = get_logger("ADUI.Selector")


def score_device_for_capabilities(device: Optional[DeviceRecord], desired: Iterable[str]) -> dict[str, Any]:
    desired = list(desired or [])
    if device is None:
        return {"matches": 0, "missing": desired, "supportsAll": False}

    supported = set(device.capabilities or [])
    missing = [c for c in desired if c not in supported]
    return {
        "matches": len(desired) - len(missing),
        "missing": missing,
        "supportsAll": not missing,
    }


@dataclass
class HeuristicChoice:
    device: Optional[DeviceRecord]
    reason: str
    score: dict[str, Any]


@dataclass
class SelectionMeta:
    device_id: Optional[str]
    reason: str
    confidence: str
    score: dict[str, Any] = field(default_factory=dict)
    alternate_device_ids: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "reason": self.reason,
            "confidence": self.confidence,
            "score": self.score,
            "alternateDeviceIds": list(self.alternate_device_ids),
            "raw": self.raw,
        }


def summarize_candidate_device(device: DeviceRecord, desired: Sequence[str]) -> dict[str, Any]:
    """Feature vector of one device as sent to the arbitration backend."""
    metadata = device.metadata or {}
    ui_schema = device.ui_schema if isinstance(device.ui_schema, dict) else None
    return {
        "id": device.id,
        "name": device.name,
        "capabilities": list(device.capabilities),
        "metadata": {
            "deviceType": metadata.get("deviceType"),
            "supportsAudio": bool(metadata.get("supportsAudio", False)),
            "supportsDictation": bool(metadata.get("supportsDictation", False)),
            "supportsTouch": bool(metadata.get("supportsTouch", False)),
            "supportsTheming": metadata.get("supportsTheming") or [],
            "supportedUiComponents": metadata.get("supportedUiComponents") or [],
            "modalityPreference": metadata.get("modalityPreference"),
        },
        "uiSchema": (
            {
                "components": ui_schema.get("components") or {},
                "tools": ui_schema.get("tools") or {},
                "theming": ui_schema.get("theming"),
                "context": ui_schema.get("context"),
            }
            if ui_schema is not None
            else None
        ),
        "defaultPrompt": device.default_prompt,
        "score": score_device_for_capabilities(device, desired),
    }


class DeviceSelector:
    """
    Args:
        store: Registry holding the candidate devices
        backend: Object with `async select_device(payload)`; None disables arbitration
        fallback_prompt: Prompt forwarded to the backend alongside the request prompt
    """

    def __init__(self, store: RegistryStore, backend: Any = None, *, fallback_prompt: Optional[str] = None):
        self.store = store
        self.backend = backend
        self.fallback_prompt = fallback_prompt

    def select_target_device(
        self,
        requested_device_id: Optional[str] = None,
        desired_capabilities: Sequence[str] = (),
    ) -> HeuristicChoice:
        desired = list(desired_capabilities or [])
        if requested_device_id:
            device = self.store.get_device(requested_device_id)
            return HeuristicChoice(
                device=device,
                reason="explicit-device-request" if device else "requested-device-not-found",
                score=score_device_for_capabilities(device, desired),
            )

        devices = self.store.devices()
        if not devices:
            return HeuristicChoice(None, "no-devices-registered", score_device_for_capabilities(None, desired))

        if not desired:
            return HeuristicChoice(devices[0], "no-capabilities-requested", score_device_for_capabilities(devices[0], desired))

        # sorted() is stable: equal keys keep registration order
        ranked = sorted(
            ((d, score_device_for_capabilities(d, desired)) for d in devices),
            key=lambda pair: (not pair[1]["supportsAll"], -pair[1]["matches"], len(pair[1]["missing"])),
        )
        device, score = ranked[0]
        return HeuristicChoice(device, "auto-selected-best-match", score)

    async def resolve(
        self,
        requested_device_id: Optional[str] = None,
        desired_capabilities: Sequence[str] = (),
        *,
        prompt: Optional[str] = None,
        thing_description: Optional[dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> SelectionMeta:
        desired = list(desired_capabilities or [])

        if requested_device_id:
            choice = self.select_target_device(requested_device_id, desired)
            return SelectionMeta(
                device_id=requested_device_id,
                reason=choice.reason,
                confidence="certain",
                score=choice.score,
                raw={"explicit": True},
            )

        devices = self.store.devices()
        if len(devices) == 1:
            sole = devices[0]
            return SelectionMeta(
                device_id=sole.id,
                reason="only-device-available",
                confidence="high",
                score=score_device_for_capabilities(sole, desired),
                raw={"soleDevice": True},
            )

        arbitrated = await self._arbitrate(devices, desired, prompt, thing_description, model)
        if arbitrated is not None:
            return arbitrated

        logger.warning("Falling back to heuristic device selection")
        choice = self.select_target_device(None, desired)
        return SelectionMeta(
            device_id=choice.device.id if choice.device else None,
            reason=choice.reason,
            confidence="heuristic",
            score=choice.score,
            raw={"heuristic": True},
        )

    async def _arbitrate(
        self,
        devices: list[DeviceRecord],
        desired: list[str],
        prompt: Optional[str],
        thing_description: Optional[dict[str, Any]],
        model: Optional[str],
    ) -> Optional[SelectionMeta]:
        if self.backend is None or not devices:
            return None

        payload = {
            "prompt": prompt,
            "fallbackPrompt": self.fallback_prompt,
            "desiredCapabilities": desired,
            "thingDescription": thing_description,
            "candidates": [summarize_candidate_device(d, desired) for d in devices],
            "model": model,
        }
        try:
            selection = await self.backend.select_device(payload)
        except Exception as e:
            log.warning("ADUI.Selector.ArbitrationFailed", extra={"fields": {"error": repr(e)}})
            return None

        target = selection.get("targetDeviceId") if isinstance(selection, dict) else None
        if not target:
            log.warning("ADUI.Selector.NoTarget", extra={"fields": {}})
            return None
        device = self.store.get_device(target)
        if device is None:
            log.warning("ADUI.Selector.UnknownTarget", extra={"fields": {"device_id": target}})
            return None

        alternates = selection.get("alternateDeviceIds")
        return SelectionMeta(
            device_id=target,
            reason=selection.get("reason") or "knowledge-base-selected-device",
            confidence=selection.get("confidence") or "unknown",
            score=score_device_for_capabilities(device, desired),
            alternate_device_ids=list(alternates) if isinstance(alternates, list) else [],
            raw=selection,
        )

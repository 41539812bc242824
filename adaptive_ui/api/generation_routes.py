from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Request

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.errors import GenerationError

log = get_logger("ADUI.API.Core")


def build_core_router() -> APIRouter:
    """Generation, refresh and action introspection endpoints."""

    router = APIRouter()

    @router.post("/generate-ui")
    async def generate_ui(request: Request, body: Optional[dict[str, Any]] = Body(default=None)) -> dict[str, Any]:
        """
        Generate a UI and (by default) push it to the target device.

        Request body:
            {
                "deviceId": str | None,          # Optional: explicit target
                "prompt": str | None,
                "schema": dict | None,           # Optional: overrides the device uiSchema
                "thingDescription": dict | None,
                "capabilities": list[str] | None,
                "broadcast": bool,               # Default: true
                "model": str | None
            }
        """
        body = body or {}
        orchestrator = request.app.state.orchestrator
        capabilities = body.get("capabilities")
        log.info(
            "ADUI.API.GenerateUi",
            extra={"fields": {
                "device_id": body.get("deviceId"),
                "prompt": body.get("prompt") or "[default]",
                "capabilities": capabilities,
            }},
        )
        try:
            outcome = await orchestrator.generate_ui_for_device(
                device_id=body.get("deviceId"),
                prompt=body.get("prompt"),
                schema=body.get("schema") if isinstance(body.get("schema"), dict) else None,
                thing_description=body.get("thingDescription") if isinstance(body.get("thingDescription"), dict) else None,
                capabilities=capabilities if isinstance(capabilities, list) else None,
                broadcast=body.get("broadcast", True) is not False,
                model=body.get("model"),
            )
        except GenerationError as e:
            log.error("ADUI.API.GenerateUiFailed", extra={"fields": {"error": str(e)}})
            raise HTTPException(status_code=500, detail=f"Failed to generate UI: {e}")
        return {"status": "UI generated", "deviceId": outcome.device_id, "ui": outcome.ui}

    @router.post("/refresh")
    async def refresh(request: Request, body: Optional[dict[str, Any]] = Body(default=None)) -> dict[str, Any]:
        orchestrator = request.app.state.orchestrator
        try:
            result = await orchestrator.refresh((body or {}).get("deviceId"))
        except GenerationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"status": "refresh-complete", **result}

    @router.get("/things/{thing_id}/actions")
    async def thing_actions(thing_id: str, request: Request) -> dict[str, Any]:
        actions = request.app.state.catalog.get_actions_for_thing(thing_id)
        return {"thingId": thing_id, "count": len(actions), "actions": [a.to_dict() for a in actions]}

    @router.get("/actions/{action_id}")
    async def get_action(action_id: str, request: Request) -> dict[str, Any]:
        action = request.app.state.catalog.get_action_by_id(action_id)
        if action is None:
            raise HTTPException(status_code=404, detail=f"Action '{action_id}' not found.")
        return {"action": action.to_dict()}

    return router

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Body, HTTPException, Request

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.errors import ValidationError
from adaptive_ui.registry.store import RegistryStore

log = get_logger("ADUI.API.Registry")


def _store(request: Request) -> RegistryStore:
    return request.app.state.registry


def _register(
    kind: str, register: Callable[[dict[str, Any]], Any], payload: Optional[dict[str, Any]]
) -> dict[str, Any]:
    try:
        record = register(payload or {})
    except ValidationError as e:
        log.info("ADUI.Registry.Rejected", extra={"fields": {"kind": kind, "error": str(e)}})
        raise HTTPException(status_code=400, detail=str(e))
    log.info(
        "ADUI.Registry.Registered",
        extra={"fields": {"kind": kind, "id": getattr(record, "id", None) or getattr(record, "name", None)}},
    )
    return {"status": "registered", kind: record.to_dict()}


def build_registry_router() -> APIRouter:
    """Registration endpoints plus read-only registry views."""

    router = APIRouter()

    @router.post("/register")
    async def register(request: Request, payload: Optional[dict[str, Any]] = Body(default=None)) -> dict[str, Any]:
        return _register("service", _store(request).register_service, payload)

    @router.post("/register/service")
    async def register_service(
        request: Request, payload: Optional[dict[str, Any]] = Body(default=None)
    ) -> dict[str, Any]:
        return _register("service", _store(request).register_service, payload)

    @router.post("/register/capability")
    async def register_capability(
        request: Request, payload: Optional[dict[str, Any]] = Body(default=None)
    ) -> dict[str, Any]:
        return _register("capability", _store(request).register_capability, payload)

    @router.post("/register/thing")
    async def register_thing(request: Request, payload: Optional[dict[str, Any]] = Body(default=None)) -> dict[str, Any]:
        return _register("thing", _store(request).register_thing, payload)

    @router.post("/register/device")
    async def register_device(
        request: Request, payload: Optional[dict[str, Any]] = Body(default=None)
    ) -> dict[str, Any]:
        # Initial generation is scheduled by the orchestrator's DeviceRegistered subscriber.
        return _register("device", _store(request).register_device, payload)

    @router.get("/services")
    async def list_services(request: Request) -> dict[str, Any]:
        store = _store(request)
        return {
            "services": [r.to_dict() for r in store.services("generic")],
            "capabilities": [r.to_dict() for r in store.services("capability")],
            "devices": [r.to_dict() for r in store.services("device")],
        }

    @router.get("/services/{name}")
    async def get_service(name: str, request: Request) -> dict[str, Any]:
        record = _store(request).find_service(name)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Service '{name}' not found.")
        return record.to_dict()

    @router.get("/registry")
    async def registry_snapshot(request: Request) -> dict[str, Any]:
        return _store(request).snapshot()

    return router

from __future__ import annotations

import base64
import json
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.errors import AdaptiveUiError, GenerationError, ValidationError
from adaptive_ui.knowledge.service import KnowledgeService

log = get_logger("ADUI.API.Knowledge")


def _knowledge(request: Request) -> KnowledgeService:
    service = getattr(request.app.state, "knowledge", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Knowledge service is not hosted by this process.")
    return service


def encode_meta_header(meta: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(meta, default=str).encode("utf-8")).decode("ascii")


def llm_meta_headers(meta: Optional[dict[str, Any]]) -> dict[str, str]:
    """Observability headers describing the LLM call that produced a response."""
    if not meta:
        return {}
    headers: dict[str, str] = {}
    if meta.get("provider"):
        headers["X-KB-LLM-Provider"] = str(meta["provider"])
    if meta.get("model"):
        headers["X-KB-LLM-Model"] = str(meta["model"])
    if isinstance(meta.get("durationMs"), (int, float)):
        headers["X-KB-LLM-Call-Duration"] = str(meta["durationMs"])
    if isinstance(meta.get("usage"), dict):
        headers["X-KB-LLM-Usage"] = json.dumps(meta["usage"])
    headers["X-KB-LLM-Meta"] = encode_meta_header(meta)
    return headers


def build_knowledge_router() -> APIRouter:
    """Generation backend endpoints: UI query, device arbitration and the document corpus."""

    router = APIRouter()

    @router.post("/query")
    async def query(request: Request, body: Optional[dict[str, Any]] = Body(default=None)) -> JSONResponse:
        service = _knowledge(request)
        try:
            ui, meta = await service.query(body or {})
        except GenerationError as e:
            log.error("ADUI.API.QueryFailed", extra={"fields": {"error": str(e)}})
            raise HTTPException(status_code=500, detail=f"Failed to generate UI with LLM: {e}")
        return JSONResponse(content=ui, headers=llm_meta_headers(meta))

    @router.post("/select-device")
    async def select_device(request: Request, body: Optional[dict[str, Any]] = Body(default=None)) -> dict[str, Any]:
        service = _knowledge(request)
        try:
            return await service.select_device(body or {})
        except AdaptiveUiError as e:
            log.error("ADUI.API.SelectDeviceFailed", extra={"fields": {"error": str(e)}})
            raise HTTPException(status_code=500, detail=f"Device selection failed: {e}")

    @router.get("/debug/last-device-selection")
    async def last_device_selection(request: Request) -> dict[str, Any]:
        selection = _knowledge(request).last_selection
        if selection is None:
            raise HTTPException(status_code=404, detail="No device selection has been recorded yet.")
        return selection

    @router.get("/documents")
    async def list_documents(request: Request) -> dict[str, Any]:
        documents = _knowledge(request).list_documents()
        return {"count": len(documents), "documents": [d.to_dict() for d in documents]}

    @router.post("/documents", status_code=201)
    async def add_document(request: Request, body: Optional[dict[str, Any]] = Body(default=None)) -> dict[str, Any]:
        body = body or {}
        service = _knowledge(request)
        try:
            document = service.add_document(
                body.get("content"),
                id=body.get("id"),
                metadata=body.get("metadata") if isinstance(body.get("metadata"), dict) else None,
                tags=body.get("tags") if isinstance(body.get("tags"), list) else None,
            )
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"status": "stored", "document": document.to_dict()}

    @router.get("/llm-config")
    async def llm_config(request: Request) -> dict[str, Any]:
        return _knowledge(request).llm.describe()

    @router.get("/llm-stats")
    async def llm_stats(request: Request) -> dict[str, Any]:
        return _knowledge(request).llm.stats.to_dict()

    return router

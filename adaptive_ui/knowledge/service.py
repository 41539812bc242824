"""
In-process knowledge backend.

Owns the document corpus and the generation conversation: prompt assembly,
the agent loop and a first binder pass over the accepted document.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.generation.binder import ActionBinder
from adaptive_ui.knowledge.agent import AgentLoop
from adaptive_ui.knowledge.prompts import PromptAssembler
from adaptive_ui.knowledge.selection import run_device_selection
from adaptive_ui.knowledge.store import Document, DocumentStore
from adaptive_ui.knowledge.ui_schema import placeholder_ui
from adaptive_ui.llm.client import LlmClient
from adaptive_ui.llm.tools import ServiceResolver
from adaptive_ui.registry.models import now_iso

log = get_logger("ADUI.Knowledge")

EMPTY_UI_TEXT = "Error: UI generation failed. The generated UI is empty."


class KnowledgeBackend(Protocol):
    async def query(self, payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any] | None]:
        """Generate a UI document; returns (ui, llm call meta)."""
        ...

    async def select_device(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """Pick a target among the candidates in payload."""
        ...


def fallback_thing_id(payload: dict[str, Any]) -> str | None:
    device = payload.get("device") if isinstance(payload.get("device"), dict) else {}
    if device.get("thingId"):
        return device["thingId"]
    actions = payload.get("thingActions") or []
    if actions and isinstance(actions[0], dict) and actions[0].get("thingId"):
        return actions[0]["thingId"]
    td = payload.get("thingDescription")
    if isinstance(td, dict) and td.get("id"):
        return td["id"]
    return None


class KnowledgeService:
    def __init__(
        self,
        documents: DocumentStore,
        llm: LlmClient,
        *,
        resolver: ServiceResolver | None = None,
        client: httpx.AsyncClient | None = None,
        binder: ActionBinder | None = None,
    ):
        self.documents = documents
        self.llm = llm
        self.assembler = PromptAssembler(documents)
        self.agent = AgentLoop(llm, resolver=resolver, client=client)
        self.binder = binder or ActionBinder()
        self.last_selection: dict[str, Any] | None = None

    async def query(self, payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any] | None]:
        """
        Run one generation.

        Raises:
            LlmUnavailableError: No provider is configured or reachable
        """
        prompt = payload.get("prompt")
        log.info(
            "ADUI.Knowledge.Query",
            extra={"fields": {
                "device_id": payload.get("deviceId"),
                "capabilities": payload.get("capabilities"),
                "prompt_preview": prompt[:60] if isinstance(prompt, str) else None,
            }},
        )
        context = self.assembler.assemble(payload)
        result = await self.agent.run(context, model=payload.get("model"))

        ui = result.ui
        if isinstance(ui, dict) and ui:
            ui = self.binder.bind(
                ui,
                [a for a in payload.get("thingActions") or [] if isinstance(a, dict)],
                fallback_thing_id(payload),
            )
        if not isinstance(ui, dict) or not ui:
            ui = placeholder_ui(EMPTY_UI_TEXT)
        return ui, result.meta

    async def select_device(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Raises:
            DeviceSelectionError: The model response was unusable
            LlmUnavailableError: No provider is configured or reachable
        """
        selection = await run_device_selection(payload, llm=self.llm, documents=self.documents)
        self.last_selection = {
            "timestamp": now_iso(),
            "request": {
                key: payload.get(key)
                for key in ("prompt", "fallbackPrompt", "desiredCapabilities", "thingDescription", "candidates", "model")
            },
            "response": selection,
        }
        log.info(
            "ADUI.Knowledge.DeviceSelected",
            extra={"fields": {
                "target": selection.get("targetDeviceId"),
                "confidence": selection.get("confidence"),
            }},
        )
        return selection

    def add_document(
        self,
        content: Any,
        *,
        id: str | None = None,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> Document:
        return self.documents.add_document(content, id=id, metadata=metadata, tags=tags)

    def list_documents(self) -> list[Document]:
        return self.documents.documents()

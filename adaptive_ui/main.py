from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, WebSocket

from adaptive_ui import __version__
from adaptive_ui.actions.catalog import ActionCatalog
from adaptive_ui.adui_logging import get_logger
from adaptive_ui.api import build_core_router, build_knowledge_router, build_registry_router
from adaptive_ui.config import load_core_config, load_knowledge_config
from adaptive_ui.generation.binder import ActionBinder
from adaptive_ui.generation.orchestrator import UiOrchestrator
from adaptive_ui.generation.selector import DeviceSelector
from adaptive_ui.knowledge.remote import HttpKnowledgeBackend
from adaptive_ui.knowledge.service import KnowledgeService
from adaptive_ui.knowledge.store import DocumentStore
from adaptive_ui.llm.client import LlmClient, load_llm_config
from adaptive_ui.llm.tools import HttpServiceResolver, RegistryServiceResolver
from adaptive_ui.plugins.registry import PluginRegistry
from adaptive_ui.plugins.thing_description import ThingDescriptionActionProvider
from adaptive_ui.registry.events import RegistryEvents
from adaptive_ui.registry.store import RegistryStore
from adaptive_ui.transport.delivery import DeliveryHub

log = get_logger("ADUI")


@asynccontextmanager
async def lifespan(app: FastAPI):
    core_cfg = load_core_config()
    kb_cfg = load_knowledge_config()
    app.state.config = core_cfg

    app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(core_cfg.http_timeout_s))

    # Action discovery plugins
    app.state.plugin_registry = PluginRegistry()
    app.state.catalog = ActionCatalog(app.state.plugin_registry)
    app.state.catalog.register_provider(ThingDescriptionActionProvider())
    app.state.plugin_registry.start_all()
    log.info(
        "ADUI.Plugins.Started",
        extra={"fields": {"providers": app.state.catalog.list_providers()}},
    )

    app.state.events = RegistryEvents()
    app.state.registry = RegistryStore(catalog=app.state.catalog, events=app.state.events)
    app.state.hub = DeliveryHub()
    binder = ActionBinder()

    # Knowledge backend: in-process unless a remote one is configured
    app.state.knowledge = None
    app.state.documents = None
    if core_cfg.knowledge_base_url:
        backend: Any = HttpKnowledgeBackend(core_cfg.knowledge_base_url, client=app.state.http_client)
        log.info("ADUI.Knowledge.Remote", extra={"fields": {"url": core_cfg.knowledge_base_url}})
    else:
        documents = DocumentStore(kb_cfg.data_file)
        documents.load()
        if kb_cfg.seed_defaults:
            documents.seed_defaults()
        app.state.documents = documents

        llm_cfg = load_llm_config()
        llm = LlmClient(llm_cfg, client=app.state.http_client, log_dir=kb_cfg.llm_log_dir)
        if core_cfg.service_registry_url:
            resolver: Any = HttpServiceResolver(core_cfg.service_registry_url, client=app.state.http_client)
        else:
            resolver = RegistryServiceResolver(app.state.registry)
        app.state.knowledge = KnowledgeService(
            documents, llm, resolver=resolver, client=app.state.http_client, binder=binder
        )
        backend = app.state.knowledge
        log.info(
            "ADUI.Knowledge.InProcess",
            extra={"fields": {
                "documents": documents.document_count,
                "llm_provider": llm_cfg.provider,
                "llm_model": llm_cfg.default_model,
            }},
        )

    app.state.selector = DeviceSelector(app.state.registry, backend, fallback_prompt=core_cfg.fallback_prompt)
    app.state.orchestrator = UiOrchestrator(
        app.state.registry,
        app.state.catalog,
        app.state.selector,
        backend,
        app.state.hub,
        binder=binder,
        fallback_prompt=core_cfg.fallback_prompt,
        client=app.state.http_client,
    )
    app.state.orchestrator.subscribe(app.state.events)

    app.state.registry.register_service({
        "name": "adaptive-ui-core",
        "url": core_cfg.public_url,
        "metadata": {"version": __version__, "description": "Adaptive UI orchestration service"},
    })

    app.state.refresh_task = None
    if core_cfg.refresh_interval_s > 0:
        app.state.refresh_task = asyncio.create_task(
            app.state.orchestrator.run_periodic_refresh(core_cfg.refresh_interval_s)
        )
    log.info(
        "ADUI.Started",
        extra={"fields": {"public_url": core_cfg.public_url, "refresh_interval_s": core_cfg.refresh_interval_s}},
    )

    yield

    task = getattr(app.state, "refresh_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    await app.state.orchestrator.aclose()

    try:
        app.state.plugin_registry.stop_all()
    except Exception as e:
        log.error("ADUI.Plugins.StopError", extra={"fields": {"error": repr(e)}})

    with contextlib.suppress(Exception):
        await app.state.http_client.aclose()
    log.info("ADUI.Stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Adaptive UI", version=__version__, lifespan=lifespan)
    app.include_router(build_registry_router())
    app.include_router(build_core_router())
    app.include_router(build_knowledge_router())

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        documents = getattr(app.state, "documents", None)
        catalog = getattr(app.state, "catalog", None)
        registry = getattr(app.state, "registry", None)
        return {
            "status": "ok",
            "registeredDevices": registry.device_count if registry is not None else 0,
            "documents": documents.document_count if documents is not None else None,
            "providers": catalog.health_all() if catalog is not None else None,
        }

    @app.websocket("/ws")
    async def ws_ui(ws: WebSocket) -> None:
        device_id = ws.query_params.get("deviceId") or None
        hub: DeliveryHub = app.state.hub
        await ws.accept()
        await hub.connect(ws, device_id)
        try:
            while True:
                message = await ws.receive()
                if message.get("type") == "websocket.disconnect":
                    return
        finally:
            hub.disconnect(ws)

    return app


app = create_app()

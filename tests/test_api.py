from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from adaptive_ui.llm.client import ChatResult, LlmCallStats, LlmConfig
from adaptive_ui.main import create_app
from adaptive_ui.transport.delivery import AWAITING_UI_TEXT


LIGHTS_UI = {"type": "container", "children": [{"type": "button", "props": {"label": "Turn on lights"}}]}

ENV_VARS = (
    "ADUI_KNOWLEDGE_BASE_URL",
    "ADUI_SERVICE_REGISTRY_URL",
    "ADUI_HOSTED_LLM_API_KEY",
    "ADUI_LLM_URL",
    "ADUI_LLM_LOG_DIR",
    "ADUI_KB_SEED",
    "ADUI_PUBLIC_URL",
    "ADUI_PORT",
)


class StaticLlm:
    """Answers every chat request with the same JSON document."""

    def __init__(self, content: Any):
        self.config = LlmConfig()
        self.stats = LlmCallStats()
        self.content = content
        self.calls = 0

    async def chat(self, request_body: dict[str, Any], *, context_label: str = "llm-request") -> ChatResult:
        self.calls += 1
        data = {
            "choices": [{"message": {"role": "assistant", "content": json.dumps(self.content)}}],
            "usage": {"total_tokens": 7},
        }
        return ChatResult(data=data, provider="hosted", model="static-model", duration_ms=3)

    def describe(self) -> dict[str, Any]:
        return {"provider": "static"}


@pytest.fixture
def app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FastAPI:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ADUI_KB_DATA_FILE", str(tmp_path / "kb-data.json"))
    monkeypatch.setenv("ADUI_UI_REFRESH_INTERVAL_S", "0")
    return create_app()


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


def _use_llm(app: FastAPI, llm: StaticLlm) -> None:
    service = app.state.knowledge
    service.llm = llm
    service.agent.llm = llm


def _drain(app: FastAPI, client: TestClient) -> None:
    client.portal.call(app.state.orchestrator.drain)


def _register_lights(client: TestClient, lights_td: dict[str, Any]) -> None:
    assert client.post("/register/thing", json={"id": "thing-1", "description": lights_td}).status_code == 200
    response = client.post("/register/device", json={"id": "tablet", "name": "Tablet", "thingId": "thing-1"})
    assert response.status_code == 200


class TestRegistryRoutes:
    def test_healthz(self, client: TestClient) -> None:
        body = client.get("/healthz").json()

        assert body["status"] == "ok"
        assert body["registeredDevices"] == 0
        assert body["documents"] == 2
        assert body["providers"]["status"] == "healthy"

    def test_core_registers_itself(self, client: TestClient) -> None:
        record = client.get("/services/adaptive-ui-core").json()
        assert record["type"] == "generic"
        assert record["url"] == "http://localhost:3001"

    def test_register_and_list(self, client: TestClient) -> None:
        response = client.post("/register/capability", json={
            "name": "weather-service", "url": "http://weather.local", "provides": ["weather"], "endpoint": "/now",
        })
        assert response.json()["status"] == "registered"
        assert response.json()["capability"]["provides"] == ["weather"]

        client.post("/register", json={"name": "logger", "url": "http://logger.local"})

        services = client.get("/services").json()
        assert [s["name"] for s in services["capabilities"]] == ["weather-service"]
        assert "logger" in [s["name"] for s in services["services"]]

    @pytest.mark.parametrize(
        "path,payload",
        [
            ("/register/service", {"name": "svc"}),
            ("/register/capability", {"url": "http://x"}),
            ("/register/thing", {"id": "thing-1"}),
            ("/register/device", {"id": "tablet"}),
            ("/register/device", None),
        ],
    )
    def test_invalid_registrations(self, client: TestClient, path: str, payload: Any) -> None:
        response = client.post(path, json=payload)
        assert response.status_code == 400

    def test_unknown_service(self, client: TestClient) -> None:
        assert client.get("/services/ghost").status_code == 404

    def test_thing_actions_and_snapshot(self, client: TestClient, lights_td: dict) -> None:
        _register_lights(client, lights_td)

        actions = client.get("/things/thing-1/actions").json()
        assert actions["count"] == 3

        action = client.get("/actions/thing-1::turnOn").json()["action"]
        assert action["transport"]["url"] == "http://lights.local/actions/turnOn"
        assert client.get("/actions/thing-1::fly").status_code == 404

        snapshot = client.get("/registry").json()
        assert [d["name"] for d in snapshot["devices"]] == ["tablet"]
        assert len(snapshot["things"][0]["actions"]) == 3


class TestGenerationRoutes:
    def test_generate_ui(self, app: FastAPI, client: TestClient, lights_td: dict) -> None:
        _use_llm(app, StaticLlm(LIGHTS_UI))
        _register_lights(client, lights_td)
        _drain(app, client)

        response = client.post("/generate-ui", json={"deviceId": "tablet", "prompt": "Lights please"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "UI generated"
        assert body["deviceId"] == "tablet"
        assert body["ui"]["children"][0]["props"]["action"]["id"] == "thing-1::turnOn"

    def test_generate_ui_unknown_device(self, client: TestClient) -> None:
        client.post("/register/device", json={"id": "tablet", "name": "Tablet"})

        response = client.post("/generate-ui", json={"deviceId": "ghost"})

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to generate UI: Unknown device 'ghost'."

    def test_generate_ui_without_llm(self, app: FastAPI, client: TestClient) -> None:
        client.post("/register/device", json={"id": "tablet", "name": "Tablet"})
        _drain(app, client)

        response = client.post("/generate-ui", json={})

        assert response.status_code == 500
        assert "No LLM endpoint available" in response.json()["detail"]

    def test_refresh(self, app: FastAPI, client: TestClient, lights_td: dict) -> None:
        assert client.post("/refresh").status_code == 400

        _use_llm(app, StaticLlm(LIGHTS_UI))
        _register_lights(client, lights_td)
        _drain(app, client)

        body = client.post("/refresh", json={}).json()
        assert body == {"status": "refresh-complete", "successes": ["tablet"], "failures": []}

    def test_websocket_delivery(self, app: FastAPI, client: TestClient, lights_td: dict) -> None:
        _register_lights(client, lights_td)
        _drain(app, client)

        with client.websocket_connect("/ws?deviceId=tablet") as ws:
            first = ws.receive_json()
        assert first["deviceId"] == "tablet"
        assert first["ui"]["children"][0]["content"] == AWAITING_UI_TEXT

        _use_llm(app, StaticLlm(LIGHTS_UI))
        assert client.post("/generate-ui", json={"deviceId": "tablet"}).status_code == 200

        with client.websocket_connect("/ws?deviceId=tablet") as ws:
            replayed = ws.receive_json()
        assert replayed["ui"]["children"][0]["props"]["action"]["id"] == "thing-1::turnOn"


class TestKnowledgeRoutes:
    def test_query_sets_llm_headers(self, app: FastAPI, client: TestClient) -> None:
        _use_llm(app, StaticLlm(LIGHTS_UI))

        response = client.post("/query", json={"prompt": "Lights"})

        assert response.status_code == 200
        assert response.json()["type"] == "container"
        assert response.headers["X-KB-LLM-Provider"] == "hosted"
        assert response.headers["X-KB-LLM-Model"] == "static-model"
        assert response.headers["X-KB-LLM-Call-Duration"] == "3"
        meta = json.loads(base64.b64decode(response.headers["X-KB-LLM-Meta"]))
        assert meta["usage"] == {"total_tokens": 7}

    def test_query_without_llm(self, client: TestClient) -> None:
        response = client.post("/query", json={"prompt": "Lights"})
        assert response.status_code == 500

    def test_select_device_and_debug(self, app: FastAPI, client: TestClient) -> None:
        assert client.get("/debug/last-device-selection").status_code == 404
        _use_llm(app, StaticLlm({"targetDeviceId": "tablet", "reason": "touch screen"}))

        response = client.post("/select-device", json={
            "prompt": "Lights", "candidates": [{"id": "tablet", "name": "Tablet"}],
        })

        assert response.json()["targetDeviceId"] == "tablet"
        debug = client.get("/debug/last-device-selection").json()
        assert debug["response"]["reason"] == "touch screen"

    def test_select_device_without_candidates(self, client: TestClient) -> None:
        assert client.post("/select-device", json={"candidates": []}).status_code == 500

    def test_documents(self, client: TestClient) -> None:
        assert client.get("/documents").json()["count"] == 2

        created = client.post("/documents", json={"content": "Prefers large buttons", "tags": ["preference"]})
        assert created.status_code == 201
        assert created.json()["status"] == "stored"

        assert client.get("/documents").json()["count"] == 3
        assert client.post("/documents", json={"content": ""}).status_code == 400

    def test_llm_introspection(self, client: TestClient) -> None:
        assert client.get("/llm-config").json()["provider"] == "unconfigured"
        assert client.get("/llm-stats").json()["totalCalls"] == 0


def test_remote_knowledge_mode(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ADUI_KNOWLEDGE_BASE_URL", "http://kb.invalid")
    monkeypatch.setenv("ADUI_UI_REFRESH_INTERVAL_S", "0")

    with TestClient(create_app()) as client:
        assert client.get("/documents").status_code == 503
        assert client.get("/healthz").json()["documents"] is None

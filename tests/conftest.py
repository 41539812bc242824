from __future__ import annotations

import copy
import json
from typing import Any, Callable

import pytest

from adaptive_ui.actions.catalog import ActionCatalog
from adaptive_ui.errors import LlmUnavailableError
from adaptive_ui.llm.client import ChatResult, LlmCallStats, LlmConfig
from adaptive_ui.plugins.registry import PluginRegistry
from adaptive_ui.plugins.thing_description import ThingDescriptionActionProvider
from adaptive_ui.registry.store import RegistryStore


LIGHTS_TD: dict[str, Any] = {
    "id": "thing-1",
    "title": "Living Room Lights",
    "base": "http://lights.local/",
    "actions": {
        "turnOn": {
            "title": "Turn on",
            "description": "Switch the lights on",
            "forms": [{"href": "/actions/turnOn", "op": "invokeaction"}],
        },
        "turnOff": {
            "title": "Turn off",
            "forms": [{"href": "actions/turnOff"}],
        },
        "toggle": {
            "title": "Toggle",
            "forms": [{"href": "http://bridge.local/toggle", "op": ["invokeaction"]}],
        },
    },
}

TRACTOR_TD: dict[str, Any] = {
    "id": "tractor-7",
    "title": "Tractor",
    "base": "http://tractor.local",
    "actions": {
        "setWheelControl": {
            "title": "Set wheel control",
            "forms": [{"href": "/wheel", "op": "invokeaction"}],
        },
    },
}


class ScriptedLlm:
    """Stand-in for LlmClient that replays canned chat-completion bodies."""

    def __init__(self, *responses: Any, temperature: float = 0.7):
        self.config = LlmConfig(temperature=temperature)
        self.stats = LlmCallStats()
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []
        self.labels: list[str] = []

    async def chat(self, request_body: dict[str, Any], *, context_label: str = "llm-request") -> ChatResult:
        self.requests.append(copy.deepcopy(request_body))
        self.labels.append(context_label)
        if not self.responses:
            raise LlmUnavailableError("No scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return ChatResult(data=item, provider="hosted", model="test-model", duration_ms=5)

    def describe(self) -> dict[str, Any]:
        return {"provider": "scripted", "model": "test-model"}


def chat_reply(content: Any = None, tool_calls: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    if content is not None and not isinstance(content, str):
        content = json.dumps(content)
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"choices": [{"message": message}], "usage": {"total_tokens": 42}}


def tool_call(name: str, arguments: dict[str, Any] | None = None, call_id: str = "call-1") -> dict[str, Any]:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(arguments or {})},
    }


@pytest.fixture
def lights_td() -> dict[str, Any]:
    return copy.deepcopy(LIGHTS_TD)


@pytest.fixture
def tractor_td() -> dict[str, Any]:
    return copy.deepcopy(TRACTOR_TD)


@pytest.fixture
def catalog() -> ActionCatalog:
    plugins = PluginRegistry()
    catalog = ActionCatalog(plugins)
    catalog.register_provider(ThingDescriptionActionProvider())
    plugins.start_all()
    return catalog


@pytest.fixture
def store(catalog: ActionCatalog) -> RegistryStore:
    return RegistryStore(catalog=catalog)


@pytest.fixture
def scripted_llm() -> Callable[..., ScriptedLlm]:
    return ScriptedLlm


@pytest.fixture
def reply() -> Callable[..., dict[str, Any]]:
    return chat_reply


@pytest.fixture
def make_tool_call() -> Callable[..., dict[str, Any]]:
    return tool_call

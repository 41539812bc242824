"""
Bounded tool-calling loop that drives the model to a UI document.

The loop is an explicit state machine:

    AWAIT_MODEL --tool calls--> EXEC_TOOLS --> AWAIT_MODEL
    AWAIT_MODEL --no tool calls--> CHECK_COMPLIANCE --> RETRY_NUDGE --> AWAIT_MODEL
                                                   \\-> ACCEPT

Model misbehaviour (no message, unparsable content, turn limit) ends in a
deterministic placeholder document. Only LlmUnavailableError escapes.
"""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.knowledge.prompts import LARGE_TAP_TARGET_PROFILE, GenerationContext
from adaptive_ui.knowledge.ui_schema import placeholder_ui
from adaptive_ui.llm.client import ChatResult, LlmClient
from adaptive_ui.llm.tools import ServiceResolver, execute_tool, format_tool_result_for_llm

log = get_logger("ADUI.Agent")

EMPTY_RESPONSE_TEXT = "Error: LLM returned an empty response."
UNPARSABLE_RESPONSE_TEXT = "Error: LLM response was empty after tool usage."
TURN_LIMIT_TEXT = "Error: LLM did not produce a UI within the allowed number of turns."

SCHEMA_REMINDER = (
    "Tool responses received. Using these fresh results, respond next with a UI object that strictly "
    "matches the provided JSON schema."
)
TOOL_NUDGE = (
    "You must call at least one available tool to fetch real-time data before finalizing the UI. "
    "Do not guess values. Call a tool now."
)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_code_fences(content: str) -> str:
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", content.strip())).strip()


def parse_assistant_content(content: Any) -> Optional[Any]:
    if not isinstance(content, str) or not content.strip():
        return None
    try:
        return json.loads(strip_code_fences(content))
    except json.JSONDecodeError:
        return None


class Phase(enum.Enum):
    AWAIT_MODEL = "await_model"
    EXEC_TOOLS = "exec_tools"
    CHECK_COMPLIANCE = "check_compliance"
    RETRY_NUDGE = "retry_nudge"
    ACCEPT = "accept"


@dataclass
class AgentState:
    phase: Phase = Phase.AWAIT_MODEL
    enforce_schema: bool = False
    tool_interaction_occurred: bool = False
    schema_reminder_added: bool = False
    nudges: int = 0
    turns: int = 0
    last_call_meta: Optional[Dict[str, Any]] = None
    last_message: Optional[Dict[str, Any]] = None
    last_parsed: Any = None
    pending_tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    ui: Optional[Dict[str, Any]] = None
    history: List[Phase] = field(default_factory=list)


@dataclass
class AgentResult:
    ui: Dict[str, Any]
    meta: Optional[Dict[str, Any]]
    state: AgentState


class AgentLoop:
    """
    Runs one generation conversation.

    Args:
        llm: Chat client with provider fallback
        resolver: Resolves tool `service` names to base URLs
        client: Shared HTTP client for tool calls
        max_nudges: "Call a tool now" retries before accepting without tools
        max_turns: Hard cap on model calls for one generation
    """

    def __init__(
        self,
        llm: LlmClient,
        *,
        resolver: Optional[ServiceResolver] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_nudges: int = 2,
        max_turns: int = 12,
    ):
        self.llm = llm
        self.resolver = resolver
        self.client = client
        self.max_nudges = max_nudges
        self.max_turns = max_turns

    async def run(self, context: GenerationContext, *, model: Optional[str] = None) -> AgentResult:
        messages = list(context.messages)
        state = AgentState(enforce_schema=bool(context.response_schema) and not context.tools)

        handlers: Dict[Phase, Callable[[AgentState, GenerationContext, List[Dict[str, Any]], Optional[str]], Awaitable[None]]] = {
            Phase.AWAIT_MODEL: self._await_model,
            Phase.EXEC_TOOLS: self._exec_tools,
            Phase.CHECK_COMPLIANCE: self._check_compliance,
            Phase.RETRY_NUDGE: self._retry_nudge,
        }
        while state.phase is not Phase.ACCEPT:
            state.history.append(state.phase)
            await handlers[state.phase](state, context, messages, model)

        ui = state.ui or placeholder_ui(UNPARSABLE_RESPONSE_TEXT)
        if context.prefer_large_tap_targets:
            if not isinstance(ui.get("context"), dict):
                ui["context"] = {}
            ui["context"].setdefault("defaultErgonomicsProfile", LARGE_TAP_TARGET_PROFILE)

        log.info(
            "ADUI.Agent.Accepted",
            extra={"fields": {
                "turns": state.turns,
                "nudges": state.nudges,
                "tool_interaction": state.tool_interaction_occurred,
            }},
        )
        return AgentResult(ui=ui, meta=state.last_call_meta, state=state)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _await_model(self, state, context, messages, model) -> None:
        if state.turns >= self.max_turns:
            log.warning("ADUI.Agent.TurnLimit", extra={"fields": {"turns": state.turns}})
            state.ui = placeholder_ui(TURN_LIMIT_TEXT)
            state.phase = Phase.ACCEPT
            return

        request: Dict[str, Any] = {
            "messages": messages,
            "temperature": self.llm.config.temperature,
        }
        if model:
            request["model"] = model
        if context.tool_definitions:
            request["tools"] = context.tool_definitions
            request["tool_choice"] = "auto"
        if state.enforce_schema and context.response_schema:
            request["response_format"] = {
                "type": "json_schema",
                "json_schema": {"schema": context.response_schema},
            }

        result: ChatResult = await self.llm.chat(request, context_label="ui-generation")
        state.turns += 1
        state.last_call_meta = result.meta()

        message = result.message
        state.last_message = message
        if message is None:
            log.error("ADUI.Agent.EmptyResponse", extra={"fields": {"turn": state.turns}})
            state.ui = placeholder_ui(EMPTY_RESPONSE_TEXT)
            state.phase = Phase.ACCEPT
            return

        state.last_parsed = parse_assistant_content(message.get("content"))
        tool_calls = message.get("tool_calls")
        if not (isinstance(tool_calls, list) and tool_calls):
            parsed = state.last_parsed
            tool_calls = parsed.get("tool_calls") if isinstance(parsed, dict) else None
        state.pending_tool_calls = list(tool_calls) if isinstance(tool_calls, list) else []

        state.phase = Phase.EXEC_TOOLS if state.pending_tool_calls else Phase.CHECK_COMPLIANCE

    async def _exec_tools(self, state, context, messages, model) -> None:
        calls = state.pending_tool_calls
        state.pending_tool_calls = []
        names = [((c or {}).get("function") or {}).get("name") for c in calls]
        log.info("ADUI.Agent.ToolCalls", extra={"fields": {"tools": [n for n in names if n]}})

        messages.append({
            "role": "assistant",
            "content": (state.last_message or {}).get("content") or "",
            "tool_calls": calls,
        })

        for call in calls:
            function = (call or {}).get("function") or {}
            tool_name = function.get("name")
            if not tool_name:
                continue
            result = await execute_tool(
                tool_name,
                function.get("arguments"),
                context.tools,
                resolver=self.resolver,
                client=self.client,
            )
            messages.append(format_tool_result_for_llm(call.get("id"), tool_name, result))

        state.tool_interaction_occurred = True
        state.enforce_schema = True
        if not state.schema_reminder_added:
            messages.append({"role": "system", "content": SCHEMA_REMINDER})
            state.schema_reminder_added = True
        state.phase = Phase.AWAIT_MODEL

    async def _check_compliance(self, state, context, messages, model) -> None:
        if context.tools and not state.tool_interaction_occurred:
            if state.nudges < self.max_nudges:
                state.phase = Phase.RETRY_NUDGE
                return
            # Nudge budget exhausted: accept this response under the schema contract.
            state.enforce_schema = True

        parsed = state.last_parsed
        if isinstance(parsed, dict) and parsed:
            state.ui = parsed
        else:
            log.error("ADUI.Agent.UnparsableContent", extra={"fields": {"turn": state.turns}})
            state.ui = placeholder_ui(UNPARSABLE_RESPONSE_TEXT)
        state.phase = Phase.ACCEPT

    async def _retry_nudge(self, state, context, messages, model) -> None:
        state.nudges += 1
        log.info("ADUI.Agent.Nudge", extra={"fields": {"nudge": state.nudges, "max": self.max_nudges}})
        messages.append({"role": "system", "content": TOOL_NUDGE})
        state.enforce_schema = False
        state.phase = Phase.AWAIT_MODEL

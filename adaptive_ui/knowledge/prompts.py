"""
Prompt and context assembly for UI generation.

Turns a generation request (the payload the orchestrator sends to /query)
into the ordered message list, the filtered response schema and the tool
definitions the agent loop runs with.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any

from adaptive_ui.knowledge.retrieval import retrieve_relevant_documents
from adaptive_ui.knowledge.store import DocumentStore
from adaptive_ui.knowledge.ui_schema import default_response_schema
from adaptive_ui.llm.tools import build_tool_definitions

LARGE_TAP_TARGET_PROFILE = "large-tap-targets"
LARGE_TAP_ALIASES = frozenset({
    LARGE_TAP_TARGET_PROFILE,
    "large tap targets",
    "glove-mode",
    "glove mode",
    "running-friendly",
    "running friendly",
})

BASE_INSTRUCTIONS = (
    "You are a UI generator. Your goal is to create a context-aware UI based on the user's prompt, "
    "the provided thing description, the requirement documents, and the available UI components.\n\n"
    "You must generate a UI that conforms to the provided JSON schema.\n\n"
    "Available components: {components}."
)

HANDS_FREE_GUIDANCE = (
    "Current context indicates the user is hands-free. Avoid presenting warnings about hands being "
    "occupied or forcing voice interactions. Provide touch-friendly controls and only mention voice "
    "input as an optional enhancement."
)
HANDS_OCCUPIED_GUIDANCE = (
    "Current activity is hands-occupied. Offer voice-first guidance and minimize the need for touch input."
)
RUNNING_GUIDANCE = (
    "Current activity is running. Keep the UI glanceable, limit the number of required taps, and avoid "
    "dense layouts that demand precision."
)
LARGE_TAP_GUIDANCE = (
    'Set `context.defaultErgonomicsProfile` to "large-tap-targets" and prefer `size: "large"` for tactile '
    "controls (buttons, toggles, sliders, dropdowns) unless a requirement explicitly calls for compact layouts."
)
STANDARD_ERGONOMICS_GUIDANCE = (
    "Unless requirements explicitly demand larger targets, leave `context.defaultErgonomicsProfile` at "
    '"standard" and size controls normally.'
)
THEMING_GUIDANCE = (
    "The device supports theming through the root `theme.primaryColor` field. When requirements or "
    "preferences mention a specific color (hex value), set `theme.primaryColor` accordingly to personalize "
    "the interface, while keeping sufficient contrast for readability."
)
NO_ACTIONS_GUIDANCE = (
    "No executable Thing actions are available. Do not create interactive components that attempt to call "
    "missing actions; focus on informative or read-only UI elements until actions are registered."
)
THINGS_WITHOUT_ACTIONS_GUIDANCE = (
    "Multiple Things are registered, but no executable actions were provided. Prefer read-only controls "
    "until action descriptors arrive."
)


def resolve_ergonomics_profile(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    token = value.strip().lower()
    return LARGE_TAP_TARGET_PROFILE if token in LARGE_TAP_ALIASES else token


def filter_response_schema(
    schema: dict[str, Any] | None,
    component_names: list[str],
    tool_names: list[str],
) -> dict[str, Any] | None:
    """
    Restrict a response schema to the device's component vocabulary.

    "<kind>Component" definitions the device does not support are removed,
    along with their component.oneOf refs. The toolCall definition is kept
    with tool.enum set to the tool names when tools exist, removed otherwise.
    """
    if not schema:
        return None
    filtered = copy.deepcopy(schema)
    definitions = filtered.get("definitions")
    if not isinstance(definitions, dict):
        return filtered

    for key in list(definitions):
        if key.endswith("Component") and key[: -len("Component")] not in component_names:
            del definitions[key]

    component = definitions.get("component")
    if isinstance(component, dict) and isinstance(component.get("oneOf"), list):
        kept = []
        for ref in component["oneOf"]:
            target = str((ref or {}).get("$ref", "")).split("/")[-1]
            kind = target[: -len("Component")] if target.endswith("Component") else target
            if kind in component_names or target == "toolCall":
                kept.append(ref)
        component["oneOf"] = kept

    tool_call = definitions.get("toolCall")
    if isinstance(tool_call, dict):
        if tool_names:
            tool_call.setdefault("properties", {}).setdefault("tool", {"type": "string"})
            tool_call["properties"]["tool"]["enum"] = list(tool_names)
        else:
            del definitions["toolCall"]
            if isinstance(component, dict) and isinstance(component.get("oneOf"), list):
                component["oneOf"] = [
                    ref for ref in component["oneOf"] if (ref or {}).get("$ref") != "#/definitions/toolCall"
                ]
    return filtered


def summarize_action(action: dict[str, Any]) -> str:
    transport = action.get("transport") or {}
    forms = action.get("forms") or []
    first_form = forms[0] if forms and isinstance(forms[0], dict) else {}
    url = transport.get("url") or first_form.get("url") or "unknown endpoint"
    method = transport.get("method") or first_form.get("method") or "POST"
    metadata = action.get("metadata") or {}
    capability = f"Capability: {metadata['capability']}. " if metadata.get("capability") else ""
    aliases = metadata.get("intentAliases") or []
    alias_clause = f"Intent aliases: {', '.join(aliases)}. " if aliases else ""
    label = action.get("title") or action.get("name") or action.get("id")
    description = action.get("description") or "No description provided."
    return (
        f"- {label} (id: {action.get('id')}): {description} "
        f"{capability}{alias_clause}Invoke via {method} {url}."
    )


@dataclass
class GenerationContext:
    messages: list[dict[str, Any]]
    response_schema: dict[str, Any] | None
    tools: dict[str, Any] = field(default_factory=dict)
    tool_definitions: list[dict[str, Any]] = field(default_factory=list)
    allowed_action_ids: list[str] = field(default_factory=list)
    prefer_large_tap_targets: bool = False
    retrieved_documents: list[dict[str, Any]] = field(default_factory=list)

    @property
    def tool_names(self) -> list[str]:
        return list(self.tools)


class PromptAssembler:
    def __init__(self, documents: DocumentStore):
        self.documents = documents

    def assemble(self, payload: dict[str, Any]) -> GenerationContext:
        ui_schema = payload.get("schema") or payload.get("uiSchema") or {}
        if not isinstance(ui_schema, dict):
            ui_schema = {}
        components = ui_schema.get("components") if isinstance(ui_schema.get("components"), dict) else {}
        tools = ui_schema.get("tools") if isinstance(ui_schema.get("tools"), dict) else {}
        component_names = list(components)
        tool_names = list(tools)

        capability_data = payload.get("capabilityData") or {}
        thing_actions = [a for a in payload.get("thingActions") or [] if isinstance(a, dict)]
        available_things = [t for t in payload.get("availableThings") or [] if isinstance(t, dict)]
        selection = payload.get("selection") or {}
        device = payload.get("device") or {}

        source_schema = (
            ui_schema.get("responseSchema") or ui_schema.get("outputSchema") or ui_schema.get("jsonSchema")
            or default_response_schema()
        )
        response_schema = filter_response_schema(source_schema, component_names, tool_names)

        retrieved = retrieve_relevant_documents(
            self.documents.documents(),
            {
                "prompt": payload.get("prompt"),
                "thingDescription": payload.get("thingDescription"),
                "capabilityData": capability_data,
                "capabilities": payload.get("capabilities"),
                "missingCapabilities": payload.get("missingCapabilities"),
                "device": device or None,
                "uiContext": ui_schema.get("context"),
                "thingActions": thing_actions,
                "availableThings": available_things,
            },
        )
        allowed_action_ids = [a["id"] for a in thing_actions if a.get("id")]

        messages: list[dict[str, Any]] = [
            _system(BASE_INSTRUCTIONS.format(components=json.dumps(components, ensure_ascii=False))),
        ]

        if retrieved:
            blocks = [
                f"Document {i} (score: {doc['score']:.3f}):\n"
                f"Source: {(doc.get('metadata') or {}).get('source') or 'unspecified'}\n"
                f"Tags: {', '.join(doc.get('tags') or []) or 'none'}\n"
                f"{doc['content']}"
                for i, doc in enumerate(retrieved, 1)
            ]
            messages.append(_system(
                "Use the following requirement knowledge when crafting the UI:\n\n" + "\n\n".join(blocks)
            ))

        preference_context = self.documents.build_preference_context()
        if preference_context:
            messages.append(_system(
                "The household profile includes persistent user preferences. Apply them whenever "
                f"compatible with the task:\n\n{preference_context}"
            ))

        prefer_large = self._add_activity_guidance(messages, capability_data, selection)

        theming = ui_schema.get("theming")
        if isinstance(theming, dict) and theming.get("supportsPrimaryColor"):
            messages.append(_system(THEMING_GUIDANCE))

        if tool_names:
            messages.append(_system(
                f"Tools available: {', '.join(tool_names)}. Call the appropriate tool to retrieve "
                "real-time capability data before finalizing the UI response. Do not call any other tool name."
            ))

        if thing_actions:
            summaries = "\n".join(summarize_action(a) for a in thing_actions)
            messages.append(_system(
                f"The target Thing exposes these WoT actions:\n{summaries}\n"
                "Reference the action id in generated components so downstream services can invoke them "
                "without hard-coding transport details. If you introduce a higher-level control, you must "
                "map it to either an existing action id or one of the documented intent aliases. Do NOT "
                "invent new command names or payload shapes."
            ))
        elif available_things:
            messages.append(_system(THINGS_WITHOUT_ACTIONS_GUIDANCE))

        if available_things:
            lines = "\n".join(
                f"- {t.get('title') or (t.get('metadata') or {}).get('deviceType') or t.get('id')} (id: {t.get('id')})"
                for t in available_things
            )
            messages.append(_system(
                f"Available Things detected:\n{lines}\nYou may create separate sections/components for "
                "different thingIds. Always include the corresponding thingId on each control so the "
                "downstream device knows which Thing to target."
            ))

        if allowed_action_ids:
            messages.append(_system(
                "STRICT REQUIREMENT: Only the following action ids may appear in the generated UI: "
                f"{', '.join(allowed_action_ids)}. Every button, toggle, slider, or interactive component must "
                "reference one of these ids (either by copying the full descriptor or by setting an object such "
                'as { "type": "thingAction", "id": "<allowed-id>" }). If no provided action satisfies a user '
                'need, omit the control entirely instead of inventing command names (e.g., never output "setPower").'
            ))
        else:
            messages.append(_system(NO_ACTIONS_GUIDANCE))

        if selection.get("reason") and device.get("name"):
            messages.append(_system(
                f'The core system selected device "{device["name"]}" ({device.get("id")}) for this UI because: '
                f"{selection['reason']}. Respect any device-specific limitations when building the UI."
            ))

        user_context = {
            "prompt": payload.get("prompt"),
            "thingDescription": payload.get("thingDescription"),
            "deviceId": payload.get("deviceId"),
            "device": payload.get("device"),
            "capabilityData": capability_data,
            "missingCapabilities": payload.get("missingCapabilities"),
            "selection": selection,
            "thingActions": thing_actions,
            "availableThings": available_things,
        }
        messages.append({"role": "user", "content": json.dumps(user_context, indent=2, ensure_ascii=False, default=str)})

        return GenerationContext(
            messages=messages,
            response_schema=response_schema,
            tools=dict(tools),
            tool_definitions=build_tool_definitions(tools),
            allowed_action_ids=allowed_action_ids,
            prefer_large_tap_targets=prefer_large,
            retrieved_documents=retrieved,
        )

    @staticmethod
    def _add_activity_guidance(
        messages: list[dict[str, Any]],
        capability_data: dict[str, Any],
        selection: dict[str, Any],
    ) -> bool:
        details = capability_data.get("userActivity") if isinstance(capability_data, dict) else None
        details = details if isinstance(details, dict) else {}
        sample = details.get("data") or details.get("cachedSample") or {}
        sample = sample if isinstance(sample, dict) else {}
        state = sample.get("id") or sample.get("state")

        selection_hint = str(selection.get("reason") or "").lower()
        selection_raw = json.dumps(selection.get("raw"), default=str).lower() if selection.get("raw") else ""
        implies_hands_free = any(
            marker in text for text in (selection_hint, selection_raw) for marker in ("hands-free", "touch")
        )

        profile = resolve_ergonomics_profile(
            sample.get("ergonomicsProfile")
            or details.get("preferredErgonomicsProfile")
            or (LARGE_TAP_TARGET_PROFILE if state == "running" else None)
        )
        prefer_large = profile == LARGE_TAP_TARGET_PROFILE or state == "running"

        if implies_hands_free or state == "hands-free":
            messages.append(_system(HANDS_FREE_GUIDANCE))
        if state == "hands-occupied":
            messages.append(_system(HANDS_OCCUPIED_GUIDANCE))
        if state == "running":
            messages.append(_system(RUNNING_GUIDANCE))
        messages.append(_system(LARGE_TAP_GUIDANCE if prefer_large else STANDARD_ERGONOMICS_GUIDANCE))
        return prefer_large


def _system(content: str) -> dict[str, Any]:
    return {"role": "system", "content": content}

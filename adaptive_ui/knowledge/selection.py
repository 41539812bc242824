"""LLM arbitration between candidate devices."""

from __future__ import annotations

import json
from typing import Any

from adaptive_ui.errors import DeviceSelectionError
from adaptive_ui.knowledge.agent import strip_code_fences
from adaptive_ui.knowledge.retrieval import retrieve_relevant_documents
from adaptive_ui.knowledge.store import DocumentStore
from adaptive_ui.llm.client import LlmClient

DEVICE_SELECTION_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "DeviceSelectionResponse",
    "type": "object",
    "properties": {
        "targetDeviceId": {
            "type": "string",
            "description": "Identifier of the device that should receive the generated UI.",
        },
        "reason": {
            "type": "string",
            "description": "Natural language rationale explaining why the device was selected.",
        },
        "confidence": {
            "type": "string",
            "enum": ["low", "medium", "high"],
            "description": "Self-reported confidence in the selection.",
        },
        "alternateDeviceIds": {
            "type": "array",
            "description": "Optional list of fallback device identifiers in preference order.",
            "items": {"type": "string"},
        },
        "requestedCapabilities": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Echo of the capability list considered for the selection.",
        },
        "considerations": {
            "type": "array",
            "description": "Key criteria used when deciding.",
            "items": {"type": "string"},
        },
    },
    "required": ["targetDeviceId", "reason"],
}

PLANNER_INSTRUCTIONS = (
    "You are a device orchestration planner. Choose the best device from the provided candidates to "
    "render the requested UI. Consider capability coverage, modality support, and any documented "
    "requirements. Respond strictly using the provided JSON schema."
)


def _yes_no(value: Any) -> str:
    return "yes" if value else "no"


def summarize_candidate(index: int, candidate: dict[str, Any]) -> str:
    metadata = candidate.get("metadata") or {}
    components = metadata.get("supportedUiComponents")
    theming = metadata.get("supportsTheming")
    score = candidate.get("score") or {}

    if score.get("supportsAll"):
        match_summary = "supports all requested capabilities"
    elif score.get("matches") or score.get("missing"):
        missing = ", ".join(score.get("missing") or []) or "none"
        match_summary = f"matches {score.get('matches') or 0}, missing {missing}"
    else:
        match_summary = "no score available"

    features = [
        f"Capabilities: {', '.join(candidate.get('capabilities') or []) or 'none'}",
        f"Supported components: {', '.join(components) if isinstance(components, list) else 'unspecified'}",
        f"Supports audio: {_yes_no(metadata.get('supportsAudio'))}",
        f"Supports dictation: {_yes_no(metadata.get('supportsDictation'))}",
        f"Supports touch: {_yes_no(metadata.get('supportsTouch'))}",
        f"Supports theming: {', '.join(theming) if isinstance(theming, list) and theming else 'no'}",
        f"Modality preference: {metadata.get('modalityPreference') or 'unspecified'}",
        f"Capability match: {match_summary}",
    ]
    return f"Candidate {index}: {candidate.get('name')} ({candidate.get('id')})\n" + "\n".join(features)


async def run_device_selection(
    payload: dict[str, Any],
    *,
    llm: LlmClient,
    documents: DocumentStore,
) -> dict[str, Any]:
    """
    Ask the model which candidate device should render the UI.

    Raises:
        DeviceSelectionError: No candidates, empty or unparsable model output
        LlmUnavailableError: No provider could be reached
    """
    candidates = [c for c in payload.get("candidates") or [] if isinstance(c, dict)]
    if not candidates:
        raise DeviceSelectionError("No device candidates provided for selection.")

    desired = payload.get("desiredCapabilities") or []
    retrieved = retrieve_relevant_documents(
        documents.documents(),
        {
            "prompt": payload.get("prompt"),
            "thingDescription": payload.get("thingDescription"),
            "capabilities": desired,
        },
    )

    messages: list[dict[str, Any]] = [
        {"role": "system", "content": PLANNER_INSTRUCTIONS},
        {
            "role": "system",
            "content": "Device candidates:\n"
            + "\n\n".join(summarize_candidate(i, c) for i, c in enumerate(candidates, 1)),
        },
    ]
    if retrieved:
        knowledge = "\n\n".join(
            f"Doc {i} (score {doc['score']:.3f}): {doc['content']}" for i, doc in enumerate(retrieved, 1)
        )
        messages.append({"role": "system", "content": f"Supporting requirement documents:\n{knowledge}"})

    preferences = documents.build_preference_context()
    if preferences:
        messages.append({"role": "system", "content": f"Persistent household preferences:\n{preferences}"})

    messages.append({
        "role": "user",
        "content": json.dumps(
            {
                "prompt": payload.get("prompt"),
                "fallbackPrompt": payload.get("fallbackPrompt"),
                "desiredCapabilities": desired,
                "thingDescription": payload.get("thingDescription"),
                "candidates": candidates,
            },
            indent=2,
            ensure_ascii=False,
            default=str,
        ),
    })

    request: dict[str, Any] = {
        "messages": messages,
        "temperature": 0.3,
        "response_format": {"type": "json_schema", "json_schema": {"schema": DEVICE_SELECTION_SCHEMA}},
    }
    if payload.get("model"):
        request["model"] = payload["model"]

    result = await llm.chat(request, context_label="device-selection")
    message = result.message or {}
    content = message.get("content")
    if not content:
        raise DeviceSelectionError("Device selection LLM returned an empty response.")

    if isinstance(content, str):
        try:
            parsed = json.loads(strip_code_fences(content))
        except json.JSONDecodeError as e:
            raise DeviceSelectionError("Unable to parse device selection response.") from e
    else:
        parsed = content

    if isinstance(parsed, list):
        parsed = parsed[0] if parsed else None
    if not isinstance(parsed, dict):
        raise DeviceSelectionError("Device selection response is not an object.")
    return parsed

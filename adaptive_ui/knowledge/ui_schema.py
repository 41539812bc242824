"""
Default JSON-schema contract for generated UI documents.

Used when a device schema does not ship its own responseSchema. Component
kinds are declared as "<kind>Component" definitions and referenced from
definitions.component.oneOf, so they can be filtered per device.
"""

import copy
from typing import Any, Dict

_SIZE = {"type": "string", "enum": ["small", "medium", "large"]}

_ACTION_REF = {
    "description": "Thing action reference: the full descriptor or {type: 'thingAction', id}.",
    "type": "object",
    "properties": {
        "type": {"type": "string"},
        "id": {"type": "string"},
        "thingId": {"type": "string"},
    },
    "required": ["id"],
}


def _component(kind: str, props: Dict[str, Any], required=()) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": [kind]},
            "id": {"type": "string"},
            "thingId": {"type": "string"},
            "props": {
                "type": "object",
                "properties": {"thingId": {"type": "string"}, **props},
                "required": list(required),
            },
        },
        "required": ["type"],
    }


DEFAULT_RESPONSE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "GeneratedUi",
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": ["container"]},
        "theme": {
            "type": "object",
            "properties": {"primaryColor": {"type": "string"}},
        },
        "context": {
            "type": "object",
            "properties": {
                "defaultErgonomicsProfile": {"type": "string"},
                "thingId": {"type": "string"},
            },
        },
        "children": {"type": "array", "items": {"$ref": "#/definitions/component"}},
    },
    "required": ["type", "children"],
    "definitions": {
        "component": {
            "oneOf": [
                {"$ref": "#/definitions/containerComponent"},
                {"$ref": "#/definitions/textComponent"},
                {"$ref": "#/definitions/buttonComponent"},
                {"$ref": "#/definitions/toggleComponent"},
                {"$ref": "#/definitions/sliderComponent"},
                {"$ref": "#/definitions/dropdownComponent"},
                {"$ref": "#/definitions/statusCardComponent"},
                {"$ref": "#/definitions/toolCall"},
            ]
        },
        "containerComponent": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["container"]},
                "props": {"type": "object"},
                "children": {"type": "array", "items": {"$ref": "#/definitions/component"}},
            },
            "required": ["type"],
        },
        "textComponent": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["text"]},
                "content": {"type": "string"},
                "props": {"type": "object"},
            },
            "required": ["type"],
        },
        "buttonComponent": _component(
            "button",
            {"label": {"type": "string"}, "size": _SIZE, "actionId": {"type": "string"},
             "intent": {"type": "string"}, "action": _ACTION_REF},
            required=("label",),
        ),
        "toggleComponent": _component(
            "toggle",
            {"label": {"type": "string"}, "size": _SIZE, "value": {"type": "boolean"},
             "actionId": {"type": "string"}, "intent": {"type": "string"}, "action": _ACTION_REF},
            required=("label",),
        ),
        "sliderComponent": _component(
            "slider",
            {"label": {"type": "string"}, "size": _SIZE, "min": {"type": "number"},
             "max": {"type": "number"}, "step": {"type": "number"}, "value": {"type": "number"},
             "actionId": {"type": "string"}, "intent": {"type": "string"}, "action": _ACTION_REF},
            required=("label",),
        ),
        "dropdownComponent": _component(
            "dropdown",
            {"label": {"type": "string"}, "size": _SIZE,
             "options": {"type": "array", "items": {"type": "string"}},
             "actionId": {"type": "string"}, "intent": {"type": "string"}, "action": _ACTION_REF},
            required=("label", "options"),
        ),
        "statusCardComponent": _component(
            "statusCard",
            {"title": {"type": "string"}, "status": {"type": "string"}, "description": {"type": "string"}},
            required=("title",),
        ),
        "toolCall": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["toolCall"]},
                "tool": {"type": "string"},
                "arguments": {"type": "object"},
            },
            "required": ["type", "tool"],
        },
    },
}


def default_response_schema() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_RESPONSE_SCHEMA)


def placeholder_ui(message: str) -> Dict[str, Any]:
    """Deterministic container+text document used when generation yields nothing usable."""
    return {"type": "container", "children": [{"type": "text", "content": message}]}

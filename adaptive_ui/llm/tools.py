"""
LLM tool definitions and execution.

Capability tools are declared in a device schema as {name: descriptor} where
the descriptor carries either an absolute `url` or a `service` name (plus
optional `path`, `method`, `headers`, `parameters`). Execution never raises:
every failure becomes an {"error": ...} payload the model can react to.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.registry.models import compose_url

logger = logging.getLogger(__name__)
log = get_logger("ADUI.LLM.Tools")


class ServiceResolver(Protocol):
    async def resolve_url(self, service_name: str) -> str:
        """Return the base URL of a registered service or raise LookupError."""
        ...


class RegistryServiceResolver:
    """Resolve service names against the in-process registry."""

    def __init__(self, store: Any):
        self.store = store

    async def resolve_url(self, service_name: str) -> str:
        record = self.store.find_service(service_name)
        if record is None or not record.url:
            raise LookupError(f"Service '{service_name}' not found")
        return record.url


class HttpServiceResolver:
    """Resolve service names through GET <registry>/services/<name>."""

    def __init__(self, registry_url: str, client: Optional[httpx.AsyncClient] = None):
        self.registry_url = registry_url.rstrip("/")
        self._client = client

    async def resolve_url(self, service_name: str) -> str:
        url = f"{self.registry_url}/services/{service_name}"
        if self._client is not None:
            r = await self._client.get(url)
        else:
            async with httpx.AsyncClient() as c:
                r = await c.get(url)
        if r.status_code >= 400:
            raise LookupError(f"Registry responded with status {r.status_code}")
        record = r.json()
        if not isinstance(record, dict) or not record.get("url"):
            raise LookupError(f"Service '{service_name}' has no url")
        return record["url"]


def build_tool_definitions(tools: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Convert schema tool descriptors to OpenAI function-calling format."""
    definitions = []
    for name, tool in tools.items():
        tool = tool if isinstance(tool, dict) else {}
        parameters = tool.get("parameters")
        if not isinstance(parameters, dict):
            parameters = {"type": "object", "properties": {}, "additionalProperties": False}
        definitions.append({
            "type": "function",
            "function": {
                "name": name,
                "description": tool.get("description") or f"Invoke tool '{name}'",
                "parameters": parameters,
            },
        })
    return definitions


def _parse_arguments(raw: Any, tool_name: str) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse arguments for tool '{tool_name}': {e}")
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


async def execute_tool(
    tool_name: str,
    raw_arguments: Any,
    tools: Dict[str, Any],
    *,
    resolver: Optional[ServiceResolver] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Execute one model-requested tool call.

    Returns:
        JSON-parsed response body, {"data": text} for non-JSON bodies, or
        {"error": ...} on any resolution or transport failure
    """
    descriptor = tools.get(tool_name)
    if not isinstance(descriptor, dict):
        log.warning("ADUI.LLM.Tools.UnknownTool", extra={"fields": {"tool_name": tool_name}})
        return {"error": f"Tool '{tool_name}' unavailable."}

    args = _parse_arguments(raw_arguments, tool_name)

    explicit_url = descriptor.get("url")
    service_url = explicit_url
    if not service_url and descriptor.get("service"):
        if resolver is None:
            return {"error": f"Unable to resolve service '{descriptor['service']}': no service registry available"}
        try:
            service_url = await resolver.resolve_url(descriptor["service"])
        except (LookupError, httpx.HTTPError, ValueError) as e:
            return {"error": f"Unable to resolve service '{descriptor['service']}': {e}"}

    if not service_url:
        return {"error": "Tool endpoint not configured."}

    endpoint_path = descriptor.get("path") or descriptor.get("endpoint") or ""
    request_url = compose_url(service_url, endpoint_path) if not explicit_url and endpoint_path else service_url
    method = str(descriptor.get("method") or "GET").upper()
    headers = dict(descriptor.get("headers") or {})

    log.info(
        "ADUI.LLM.Tools.Invoke",
        extra={"fields": {"tool_name": tool_name, "method": method, "url": request_url}},
    )

    async def _send(c: httpx.AsyncClient) -> httpx.Response:
        if method == "GET":
            return await c.request(method, request_url, headers=headers)
        return await c.request(method, request_url, headers=headers, json=args)

    try:
        if client is not None:
            response = await _send(client)
        else:
            async with httpx.AsyncClient() as c:
                response = await _send(c)
    except httpx.HTTPError as e:
        log.error(
            "ADUI.LLM.Tools.ExecutionError",
            extra={"fields": {"tool_name": tool_name, "error": str(e)}},
        )
        return {"error": str(e) or type(e).__name__}

    if response.status_code >= 400:
        return {"error": f"Tool responded with status {response.status_code}", "details": response.text}

    try:
        return response.json()
    except ValueError:
        return {"data": response.text}


def format_tool_result_for_llm(tool_call_id: Optional[str], tool_name: str, result: Any) -> Dict[str, Any]:
    """Wrap a tool result as a chat message keyed by the call id."""
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": json.dumps(result, ensure_ascii=False, default=str),
    }

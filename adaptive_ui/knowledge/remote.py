"""Knowledge backend running as a separate service, reached over HTTP."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import httpx

from adaptive_ui.errors import KnowledgeBackendError

logger = logging.getLogger(__name__)


def decode_meta_header(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        decoded = json.loads(base64.b64decode(value).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


class HttpKnowledgeBackend:
    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.post(url, json=payload)
        async with httpx.AsyncClient() as c:
            return await c.post(url, json=payload)

    async def query(self, payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any] | None]:
        """
        Raises:
            KnowledgeBackendError: Backend unreachable, non-2xx or non-JSON response
        """
        try:
            r = await self._post("/query", payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to reach knowledge backend: {e}")
            raise KnowledgeBackendError(f"Knowledge base unreachable: {e}") from e

        if r.status_code >= 400:
            logger.error(f"Knowledge backend responded with status {r.status_code}: {r.text}")
            raise KnowledgeBackendError(f"Knowledge base error ({r.status_code})")

        try:
            ui = r.json()
        except ValueError as e:
            raise KnowledgeBackendError("Knowledge base returned a non-JSON body") from e
        return (ui if isinstance(ui, dict) else {}), decode_meta_header(r.headers.get("X-KB-LLM-Meta"))

    async def select_device(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """Selection failures are reported as None; the caller falls back to heuristics."""
        try:
            r = await self._post("/select-device", payload)
        except httpx.HTTPError as e:
            logger.error(f"Device selection via knowledge backend failed: {e}")
            return None

        if r.status_code >= 400:
            logger.error(f"Knowledge backend device selection failed with status {r.status_code}: {r.text}")
            return None
        try:
            selection = r.json()
        except ValueError:
            logger.warning("Knowledge backend device selection returned a non-JSON body")
            return None
        return selection if isinstance(selection, dict) else None

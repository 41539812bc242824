from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from adaptive_ui.adui_logging import get_logger
from adaptive_ui.config import _opt_float, _opt_str
from adaptive_ui.errors import LlmUnavailableError
from adaptive_ui.registry.models import now_iso

logger = logging.getLogger(__name__)
log = get_logger("ADUI.LLM")


@dataclass(frozen=True, slots=True)
class HostedLlmConfig:
    """Primary hosted provider (OpenAI-compatible, e.g. OpenRouter)."""

    api_key: str
    url: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str | None = None
    referer: str | None = None
    title: str | None = "Adaptive UI Knowledge Base"
    reasoning_effort: str | None = None


@dataclass(frozen=True, slots=True)
class LocalLlmConfig:
    """Secondary self-hosted OpenAI-compatible endpoint."""

    url: str  # .../v1 or .../v1/chat/completions
    model: str = "local"


@dataclass(frozen=True, slots=True)
class LlmConfig:
    hosted: HostedLlmConfig | None = None
    local: LocalLlmConfig | None = None
    temperature: float = 0.7
    timeout_s: float | None = None

    @property
    def provider(self) -> str:
        if self.hosted is not None:
            return "hosted"
        if self.local is not None:
            return "local"
        return "unconfigured"

    @property
    def default_model(self) -> str | None:
        if self.hosted is not None and self.hosted.model:
            return self.hosted.model
        if self.local is not None:
            return self.local.model
        return None


def chat_completions_url(url: str) -> str:
    # Accept either .../v1 or .../v1/chat/completions.
    base = url.rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def load_llm_config() -> LlmConfig:
    hosted = None
    api_key = _opt_str("ADUI_HOSTED_LLM_API_KEY")
    if api_key:
        hosted = HostedLlmConfig(
            api_key=api_key,
            url=_opt_str("ADUI_HOSTED_LLM_URL") or "https://openrouter.ai/api/v1/chat/completions",
            model=_opt_str("ADUI_HOSTED_LLM_MODEL"),
            referer=_opt_str("ADUI_HOSTED_LLM_REFERER"),
            title=_opt_str("ADUI_HOSTED_LLM_TITLE") or "Adaptive UI Knowledge Base",
            reasoning_effort=_opt_str("ADUI_HOSTED_LLM_REASONING_EFFORT"),
        )

    local = None
    local_url = _opt_str("ADUI_LLM_URL")
    if local_url:
        local = LocalLlmConfig(url=local_url, model=_opt_str("ADUI_LLM_MODEL") or "local")

    temperature = _opt_float("ADUI_LLM_TEMPERATURE")
    return LlmConfig(
        hosted=hosted,
        local=local,
        temperature=0.7 if temperature is None else temperature,
        timeout_s=_opt_float("ADUI_HTTP_TIMEOUT_S"),
    )


@dataclass
class ChatResult:
    data: dict[str, Any]
    provider: str
    model: str | None
    duration_ms: int

    @property
    def message(self) -> dict[str, Any] | None:
        choices = self.data.get("choices") if isinstance(self.data, dict) else None
        if not isinstance(choices, list) or not choices:
            return None
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        return message if isinstance(message, dict) else None

    @property
    def usage(self) -> dict[str, Any] | None:
        usage = self.data.get("usage") if isinstance(self.data, dict) else None
        return usage if isinstance(usage, dict) else None

    def meta(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "durationMs": self.duration_ms,
            "usage": self.usage,
            "timestamp": now_iso(),
        }


@dataclass
class LlmCallStats:
    """Aggregated call statistics, optionally mirrored to llm-stats.json."""

    total_calls: int = 0
    total_duration_ms: int = 0
    total_tokens: int = 0
    providers: dict[str, dict[str, int]] = field(default_factory=dict)
    models: dict[str, dict[str, int]] = field(default_factory=dict)
    last_updated: str | None = None

    def record(self, *, provider: str, model: str | None, duration_ms: int, tokens: int | None) -> None:
        self.total_calls += 1
        self.total_duration_ms += duration_ms
        if isinstance(tokens, int):
            self.total_tokens += tokens

        p = self.providers.setdefault(provider, {"calls": 0, "durationMs": 0})
        p["calls"] += 1
        p["durationMs"] += duration_ms

        if model:
            m = self.models.setdefault(model, {"calls": 0, "tokens": 0, "durationMs": 0})
            m["calls"] += 1
            m["durationMs"] += duration_ms
            if isinstance(tokens, int):
                m["tokens"] += tokens

        self.last_updated = now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCalls": self.total_calls,
            "totalDurationMs": self.total_duration_ms,
            "totalTokens": self.total_tokens,
            "providers": self.providers,
            "models": self.models,
            "lastUpdated": self.last_updated,
        }


class LlmClient:
    """
    Chat-completion client with hosted → self-hosted fallback.

    Every attempt is appended to llm-transcripts.log (when a log directory is
    configured); successful attempts update the call stats.
    """

    def __init__(
        self,
        config: LlmConfig,
        *,
        client: httpx.AsyncClient | None = None,
        log_dir: Path | None = None,
    ):
        self.config = config
        self._client = client
        self.log_dir = log_dir
        self.stats = LlmCallStats()

    def describe(self) -> dict[str, Any]:
        cfg = self.config
        return {
            "provider": cfg.provider,
            "model": cfg.default_model,
            "endpoint": (
                cfg.hosted.url if cfg.hosted is not None
                else chat_completions_url(cfg.local.url) if cfg.local is not None
                else None
            ),
            "fallbackModel": cfg.local.model if cfg.local is not None else None,
            "hostedModel": cfg.hosted.model if cfg.hosted is not None else None,
            "allowsFallback": cfg.hosted is not None and cfg.local is not None,
            "timestamp": now_iso(),
        }

    async def chat(self, request_body: dict[str, Any], *, context_label: str = "llm-request") -> ChatResult:
        """
        Run one chat completion.

        Raises:
            LlmUnavailableError: If no provider is configured or every configured provider failed
        """
        cfg = self.config
        if cfg.hosted is None and cfg.local is None:
            raise LlmUnavailableError(
                "No LLM endpoint available. Configure ADUI_HOSTED_LLM_API_KEY or ADUI_LLM_URL."
            )

        payload = dict(request_body)
        payload["model"] = payload.get("model") or cfg.default_model
        if cfg.hosted is not None and cfg.hosted.reasoning_effort:
            reasoning = payload.get("reasoning") if isinstance(payload.get("reasoning"), dict) else {}
            payload["reasoning"] = {**reasoning, "effort": cfg.hosted.reasoning_effort}

        errors: list[str] = []

        if cfg.hosted is not None:
            headers = {"Authorization": f"Bearer {cfg.hosted.api_key}"}
            if cfg.hosted.referer:
                headers["HTTP-Referer"] = cfg.hosted.referer
            if cfg.hosted.title:
                headers["X-Title"] = cfg.hosted.title
            try:
                return await self._attempt("hosted", cfg.hosted.url, payload, headers, context_label)
            except (httpx.HTTPError, ValueError) as e:
                errors.append(f"hosted: {e}")
                log.warning(
                    "ADUI.LLM.ProviderFailed",
                    extra={"fields": {"provider": "hosted", "context": context_label, "error": str(e)}},
                )

        if cfg.local is not None:
            local_payload = {**payload, "model": request_body.get("model") or cfg.local.model}
            try:
                return await self._attempt(
                    "local", chat_completions_url(cfg.local.url), local_payload, {}, context_label
                )
            except (httpx.HTTPError, ValueError) as e:
                errors.append(f"local: {e}")
                log.warning(
                    "ADUI.LLM.ProviderFailed",
                    extra={"fields": {"provider": "local", "context": context_label, "error": str(e)}},
                )

        raise LlmUnavailableError(f"All LLM providers failed ({'; '.join(errors)})")

    async def _attempt(
        self,
        provider: str,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        context_label: str,
    ) -> ChatResult:
        log.info(
            "ADUI.LLM.Request",
            extra={"fields": {"provider": provider, "model": payload.get("model"), "context": context_label}},
        )
        started = time.perf_counter()
        try:
            data = await self._post(url, payload, headers)
        except (httpx.HTTPError, ValueError) as e:
            duration_ms = int((time.perf_counter() - started) * 1000)
            self._append_transcript(context_label, provider, payload, None, duration_ms, error=str(e))
            raise

        duration_ms = int((time.perf_counter() - started) * 1000)
        result = ChatResult(data=data, provider=provider, model=payload.get("model"), duration_ms=duration_ms)
        self._append_transcript(context_label, provider, payload, data, duration_ms)

        usage = result.usage or {}
        tokens = usage.get("total_tokens")
        self.stats.record(
            provider=provider,
            model=result.model,
            duration_ms=duration_ms,
            tokens=tokens if isinstance(tokens, int) else None,
        )
        self._persist_stats()
        log.info(
            "ADUI.LLM.Done",
            extra={"fields": {"provider": provider, "model": result.model, "duration_ms": duration_ms}},
        )
        return result

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        async def _send(c: httpx.AsyncClient) -> dict[str, Any]:
            r = await c.post(url, json=payload, headers=headers)
            r.raise_for_status()
            data = r.json()
            if not isinstance(data, dict):
                raise ValueError("LLM response body is not a JSON object")
            return data

        if self._client is not None:
            return await _send(self._client)

        async with httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_s)) as c:
            return await _send(c)

    def _append_transcript(
        self,
        context_label: str,
        provider: str,
        request: dict[str, Any],
        response: dict[str, Any] | None,
        duration_ms: int,
        *,
        error: str | None = None,
    ) -> None:
        if self.log_dir is None:
            return
        entry = {
            "timestamp": now_iso(),
            "contextLabel": context_label,
            "provider": provider,
            "model": request.get("model"),
            "durationMs": duration_ms,
            "error": error,
            "request": request,
            "response": response,
        }
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_dir / "llm-transcripts.log", "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            logger.error(f"Failed to append LLM transcript: {e}")

    def _persist_stats(self) -> None:
        if self.log_dir is None:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_dir / "llm-stats.json", "w", encoding="utf-8") as f:
                json.dump(self.stats.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to persist LLM stats: {e}")

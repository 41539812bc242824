from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


FALLBACK_PROMPT = (
    "Analyze the registered devices, their schemas, and capabilities. Select the best-suited "
    "target automatically, then design a responsive UI with clear state feedback and "
    "appropriate theming cues for the referenced thing."
)


@dataclass(frozen=True, slots=True)
class CoreConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    public_url: str = "http://localhost:3001"
    knowledge_base_url: str | None = None  # None: in-process knowledge service
    service_registry_url: str | None = None  # None: resolve tool services in-process
    refresh_interval_s: float = 60.0  # 0 disables periodic regeneration
    fallback_prompt: str = FALLBACK_PROMPT
    http_timeout_s: float | None = None  # None: outbound calls never time out


@dataclass(frozen=True, slots=True)
class KnowledgeConfig:
    data_file: Path = Path("kb-data.json")
    seed_defaults: bool = True
    llm_log_dir: Path | None = None


def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _opt_str(name: str) -> str | None:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _opt_float(name: str) -> float | None:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return None
    try:
        return float(v)
    except ValueError:
        return None


def load_core_config() -> CoreConfig:
    port = int(os.environ.get("ADUI_PORT", "3001"))
    kb_url = _opt_str("ADUI_KNOWLEDGE_BASE_URL")
    registry_url = _opt_str("ADUI_SERVICE_REGISTRY_URL")
    refresh = _opt_float("ADUI_UI_REFRESH_INTERVAL_S")

    return CoreConfig(
        host=os.environ.get("ADUI_HOST", "0.0.0.0"),
        port=port,
        public_url=(_opt_str("ADUI_PUBLIC_URL") or f"http://localhost:{port}").rstrip("/"),
        knowledge_base_url=kb_url.rstrip("/") if kb_url else None,
        service_registry_url=registry_url.rstrip("/") if registry_url else None,
        refresh_interval_s=60.0 if refresh is None else max(0.0, refresh),
        fallback_prompt=_opt_str("ADUI_FALLBACK_PROMPT") or FALLBACK_PROMPT,
        http_timeout_s=_opt_float("ADUI_HTTP_TIMEOUT_S"),
    )


def load_knowledge_config() -> KnowledgeConfig:
    log_dir = _opt_str("ADUI_LLM_LOG_DIR")
    return KnowledgeConfig(
        data_file=Path(os.environ.get("ADUI_KB_DATA_FILE", "kb-data.json")),
        seed_defaults=_env_flag("ADUI_KB_SEED", "1"),
        llm_log_dir=Path(log_dir) if log_dir else None,
    )

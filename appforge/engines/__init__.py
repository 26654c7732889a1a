# FILE: appforge/engines/__init__.py
"""
Text-generation engines.

One `Engine` class fronts a closed set of providers. The provider is picked by
a config string at construction; the kind decides which client and call shape
is used, nothing else differs for callers.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import anthropic
import openai

from appforge.core.config import CEREBRAS_BASE_URL, DEFAULT_ENGINE, PHASE_MAX_TOKENS, get_provider_key
from appforge.engines.errors import EngineError, auth_error, normalize_engine_exception

logger = logging.getLogger("appforge.engines")


@dataclass(frozen=True)
class EngineInfo:
    id: str
    name: str
    speed: str
    quality: str
    cost_per_1k_tokens: float
    default_model: str
    key_env: Tuple[str, ...]


ENGINE_CATALOG: Dict[str, EngineInfo] = {
    "claude": EngineInfo(
        id="claude",
        name="Claude (Anthropic)",
        speed="slow",
        quality="excellent",
        cost_per_1k_tokens=0.015,
        default_model="claude-sonnet-4-20250514",
        key_env=("ANTHROPIC_API_KEY",),
    ),
    "cerebras": EngineInfo(
        id="cerebras",
        name="Cerebras",
        speed="ultra-fast",
        quality="good",
        cost_per_1k_tokens=0.001,
        default_model="llama3.3-70b",
        key_env=("CEREBRAS_API_KEY",),
    ),
}


PRESET_PHASES = ("backend", "frontend", "database", "infrastructure", "documentation", "components")

# preset -> phase -> engine kind
ENGINE_PRESETS: Dict[str, Dict[str, Any]] = {
    "fast": {
        "name": "Fast Generation",
        "description": "Use Cerebras for all phases - fastest generation",
        "config": {phase: "cerebras" for phase in PRESET_PHASES},
    },
    "quality": {
        "name": "Quality Generation",
        "description": "Use Claude for all phases - highest quality",
        "config": {phase: "claude" for phase in PRESET_PHASES},
    },
    "hybrid": {
        "name": "Hybrid Generation",
        "description": "Claude for the database and infrastructure, Cerebras for routine code",
        "config": {
            "backend": "cerebras",
            "frontend": "cerebras",
            "database": "claude",
            "infrastructure": "claude",
            "documentation": "cerebras",
            "components": "cerebras",
        },
    },
}


def preset_engine_kind(preset: str, phase: str) -> str:
    if preset not in ENGINE_PRESETS:
        raise ValueError(f"Unknown preset: {preset}. Available: {', '.join(ENGINE_PRESETS)}")
    return ENGINE_PRESETS[preset]["config"].get(phase, DEFAULT_ENGINE)


@dataclass
class EngineResult:
    content: str
    input_tokens: int
    output_tokens: int
    elapsed_ms: int

    @property
    def tokens(self) -> Dict[str, int]:
        return {"input": self.input_tokens, "output": self.output_tokens}


def list_engines() -> List[Dict[str, Any]]:
    out = []
    for info in ENGINE_CATALOG.values():
        data = asdict(info)
        data.pop("key_env")
        data["configured"] = bool(get_provider_key(*info.key_env))
        out.append(data)
    return out


# ----------------------------
# Provider calls (sync SDK, run in a worker thread)
# ----------------------------
def _claude_client(api_key: str):
    return anthropic.Anthropic(api_key=api_key)


def _cerebras_client(api_key: str):
    # Cerebras speaks the OpenAI chat-completions protocol
    return openai.OpenAI(api_key=api_key, base_url=CEREBRAS_BASE_URL)


def _claude_call(client, model: str, prompt: str, system_prompt: Optional[str], max_tokens: int) -> Tuple[str, int, int]:
    kwargs: Dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_prompt:
        kwargs["system"] = system_prompt
    message = client.messages.create(**kwargs)

    text = "".join(
        getattr(block, "text", "") for block in (message.content or [])
        if getattr(block, "type", "text") == "text"
    )
    usage = getattr(message, "usage", None)
    return (
        text,
        int(getattr(usage, "input_tokens", 0) or 0),
        int(getattr(usage, "output_tokens", 0) or 0),
    )


def _cerebras_call(client, model: str, prompt: str, system_prompt: Optional[str], max_tokens: int) -> Tuple[str, int, int]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    resp = client.chat.completions.create(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=0.2,
    )
    text = resp.choices[0].message.content or ""
    usage = getattr(resp, "usage", None)
    return (
        text,
        int(getattr(usage, "prompt_tokens", 0) or 0),
        int(getattr(usage, "completion_tokens", 0) or 0),
    )


_CLIENT_FACTORIES: Dict[str, Callable[[str], Any]] = {
    "claude": _claude_client,
    "cerebras": _cerebras_client,
}

_CALLS: Dict[str, Callable[..., Tuple[str, int, int]]] = {
    "claude": _claude_call,
    "cerebras": _cerebras_call,
}


class Engine:
    def __init__(self, kind: str = DEFAULT_ENGINE, client: Any = None, model: Optional[str] = None):
        kind = (kind or "").strip().lower()
        if kind not in ENGINE_CATALOG:
            raise ValueError(f"Unknown engine: {kind}. Available: {', '.join(ENGINE_CATALOG)}")
        self.kind = kind
        self.info = ENGINE_CATALOG[kind]
        self.model = model or self.info.default_model
        # Lazy init: only create client when needed
        self._client = client

    def _get_client(self):
        if self._client is None:
            key = get_provider_key(*self.info.key_env)
            if not key:
                raise auth_error(f"{self.info.key_env[0]} not configured (.env).")
            self._client = _CLIENT_FACTORIES[self.kind](key)
        return self._client

    async def generate(
            self,
            prompt: str,
            system_prompt: Optional[str] = None,
            max_tokens: Optional[int] = None,
            model: Optional[str] = None,
    ) -> EngineResult:
        client = self._get_client()
        call = _CALLS[self.kind]
        use_model = model or self.model
        budget = int(max_tokens or PHASE_MAX_TOKENS)

        start = time.monotonic()
        try:
            content, tokens_in, tokens_out = await asyncio.to_thread(
                call, client, use_model, prompt, system_prompt, budget
            )
        except EngineError:
            raise
        except Exception as e:
            err = normalize_engine_exception(e)
            logger.error(f"{self.kind} call failed ({err.code}): {err.raw}")
            raise err from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"{self.kind}/{use_model}: {tokens_in} in, {tokens_out} out, {elapsed_ms}ms")
        return EngineResult(
            content=content,
            input_tokens=tokens_in,
            output_tokens=tokens_out,
            elapsed_ms=elapsed_ms,
        )


def get_engine(kind: Optional[str] = None) -> Engine:
    return Engine(kind or DEFAULT_ENGINE)


__all__ = [
    "ENGINE_CATALOG",
    "ENGINE_PRESETS",
    "Engine",
    "EngineError",
    "EngineInfo",
    "EngineResult",
    "PRESET_PHASES",
    "get_engine",
    "list_engines",
    "preset_engine_kind",
]

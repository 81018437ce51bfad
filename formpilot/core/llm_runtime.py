"""
模型调用与回退链

- 按顺序尝试 models：限流、模型不支持视觉 / 不存在时换下一个
- 最后一个模型仍被限流时，错误摘要带 "429 rate_limit"，AgentGate 据此退避重试
- 返回 token 用量，由适配器记到 CostTracker
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

_RATE_LIMIT_MARKERS = ("429", "rate_limit", "rate limit", "too many requests")
_CAPABILITY_MARKERS = (
    "does not support",
    "unsupported",
    "multimodal",
    "vision",
    "image_url",
    "invalid model",
    "model_not_found",
    "not found",
)

# kind -> (error_code, summary) when every model failed the same way
_EXHAUSTED = {
    "rate_limit": ("rate_limit_exhausted", "429 rate_limit: every model in the chain is rate limited"),
    "capability": ("model_unsupported_exhausted", "no model in the chain supports this request"),
}


@dataclass
class LLMCallResult:
    ok: bool
    raw: str = ""
    model: str = ""
    model_index: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    error_summary: Optional[str] = None
    error_code: Optional[str] = None


def classify_llm_error(error_str: str) -> str:
    """rate_limit / capability / other"""
    lower = (error_str or "").lower()
    if any(marker in lower for marker in _RATE_LIMIT_MARKERS):
        return "rate_limit"
    if any(marker in lower for marker in _CAPABILITY_MARKERS):
        return "capability"
    return "other"


def _completion_to_result(completion, model: str, index: int) -> LLMCallResult:
    usage = getattr(completion, "usage", None)
    return LLMCallResult(
        ok=True,
        raw=completion.choices[0].message.content or "",
        model=model,
        model_index=index,
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
    )


def run_chat_with_fallback(
    *,
    client,
    fallback_models: list[str],
    messages: list[dict],
    start_model_index: int = 0,
    temperature: float = 0.0,
    max_tokens: int = 800,
    response_format: Optional[dict] = None,
    on_log: Optional[Callable[[str, str], None]] = None,
    sleep_seconds: float = 1.0,
) -> LLMCallResult:
    """从 start_model_index 开始沿模型链调用 chat.completions；不抛异常。"""
    log = on_log or (lambda level, message: None)
    models = list(fallback_models)
    if not models:
        return LLMCallResult(ok=False, error_summary="no model configured", error_code="llm_no_result")

    start = start_model_index if 0 <= start_model_index < len(models) else 0
    extra = {"response_format": response_format} if response_format else {}

    for index in range(start, len(models)):
        model = models[index]
        try:
            completion = client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **extra,
            )
        except Exception as exc:
            kind = classify_llm_error(str(exc))
            if kind == "other":
                return LLMCallResult(
                    ok=False,
                    model=model,
                    model_index=index,
                    error_summary=f"LLM call failed: {exc}",
                    error_code="llm_call_failed",
                )
            log("warn", f"⚠ 模型 {model} 不可用 ({kind})")
            if index + 1 < len(models):
                log("info", f"🔄 改用模型 {models[index + 1]}")
                time.sleep(max(0.0, sleep_seconds))
                continue
            code, summary = _EXHAUSTED[kind]
            return LLMCallResult(
                ok=False, model=model, model_index=index, error_summary=summary, error_code=code
            )
        return _completion_to_result(completion, model, index)

    return LLMCallResult(ok=False, model=models[-1], model_index=len(models) - 1, error_code="llm_no_result")
